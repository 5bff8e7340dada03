from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from tourdesk.database import get_db
from tourdesk.models import Departure, Passenger, PAID_STATUSES, Reservation, ReservationStatus, User
from tourdesk.schemas import (
    BulkReservationRequest,
    BulkValidationResponse,
    PassengerCreate,
    PassengerResponse,
    ReservationCreate,
    ReservationDetail,
    ReservationResponse,
    ReservationStatusUpdate,
    TimelineEventResponse,
)
from tourdesk.services import reservation_service
from tourdesk.services.email_templates import NotificationService
from tourdesk.services.errors import ReservationError
from tourdesk.services.reservation_service import SEAT_RELEASING_STATUSES
from tourdesk.services.timeline import list_events, record_event
from tourdesk.api.deps import (
    ensure_can_view,
    get_current_user,
    get_notification_service,
    get_optional_user,
    http_error,
    require_admin,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _load_for_user(db: Session, reservation_id: int, user: User):
    try:
        reservation = reservation_service.get_reservation(db, reservation_id)
    except ReservationError as e:
        raise http_error(e)
    ensure_can_view(reservation, user)
    return reservation


@router.post("", response_model=ReservationDetail, status_code=201)
async def create_reservation(
    payload: ReservationCreate,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
    notifications: NotificationService = Depends(get_notification_service),
):
    departure = db.query(Departure).filter(Departure.id == payload.departure_id).first()
    if not departure:
        raise HTTPException(status_code=404, detail="Departure not found")

    # Early rejection only; create_atomic re-checks under the write
    if departure.available_seats < payload.number_of_passengers:
        raise HTTPException(
            status_code=409,
            detail=f"Only {departure.available_seats} seats left",
        )

    created_by_admin = user is not None and user.is_admin
    if user is None and not (payload.buyer_name and payload.buyer_email):
        raise HTTPException(status_code=400, detail="buyer_name and buyer_email are required for guest bookings")

    data = {
        "user_id": user.id if user is not None and not created_by_admin else None,
        "buyer_name": payload.buyer_name,
        "buyer_email": payload.buyer_email,
        "buyer_phone": payload.buyer_phone,
    }

    try:
        reservation = reservation_service.create_atomic(
            db,
            data,
            payload.departure_id,
            payload.number_of_passengers,
            passengers=[p.model_dump() for p in payload.passengers],
            performed_by=user.id if user is not None else None,
            created_by_admin=created_by_admin,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)

    try:
        await notifications.send_reservation_confirmation(reservation)
    except Exception as e:
        logger.error(f"Confirmation email for {reservation.reservation_code} failed: {e}")

    db.refresh(reservation)
    return reservation


@router.post("/bulk/validate", response_model=BulkValidationResponse)
async def validate_bulk_reservations(
    payload: BulkReservationRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Dry run of a bulk import: seats requested per departure against seats free now."""
    items = [item.model_dump() for item in payload.reservations]
    checks = reservation_service.check_bulk_capacity(db, items)
    return {
        "valid": all(check["problem"] is None for check in checks),
        "departures": checks,
    }


@router.post("/bulk", response_model=List[ReservationDetail], status_code=201)
async def create_bulk_reservations(
    payload: BulkReservationRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifications: NotificationService = Depends(get_notification_service),
):
    user_ids = {item.user_id for item in payload.reservations if item.user_id is not None}
    if user_ids and db.query(User).filter(User.id.in_(user_ids)).count() != len(user_ids):
        raise HTTPException(status_code=400, detail="Unknown user_id in bulk import")
    for index, item in enumerate(payload.reservations, start=1):
        if item.user_id is None and not (item.buyer_name and item.buyer_email):
            raise HTTPException(
                status_code=400,
                detail=f"Row {index}: buyer_name and buyer_email are required without a user_id",
            )

    try:
        reservations = reservation_service.create_bulk_atomic(
            db,
            [item.model_dump() for item in payload.reservations],
            performed_by=admin.id,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)

    for reservation in reservations:
        try:
            await notifications.send_reservation_confirmation(reservation)
        except Exception as e:
            logger.error(f"Confirmation email for {reservation.reservation_code} failed: {e}")

    return reservations


@router.get("", response_model=List[ReservationResponse])
async def list_reservations(
    status: Optional[ReservationStatus] = None,
    departure_id: Optional[int] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Reservation)
    if not user.is_admin:
        query = query.filter(Reservation.user_id == user.id)
    if status is not None:
        query = query.filter(Reservation.status == status)
    if departure_id is not None:
        query = query.filter(Reservation.departure_id == departure_id)
    return query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()


@router.get("/{reservation_id}", response_model=ReservationDetail)
async def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _load_for_user(db, reservation_id, user)


@router.put("/{reservation_id}/status", response_model=ReservationResponse)
async def update_reservation_status(
    reservation_id: int,
    payload: ReservationStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    notifications: NotificationService = Depends(get_notification_service),
):
    try:
        current = reservation_service.get_reservation(db, reservation_id)
        before, payment_before = current.status, current.payment_status
        reservation = reservation_service.change_status(
            db,
            reservation_id,
            status=payload.status,
            payment_status=payload.payment_status,
            performed_by=admin.id,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)

    if payload.status == ReservationStatus.CANCELADA and before not in SEAT_RELEASING_STATUSES:
        try:
            await notifications.send_cancellation_notice(reservation, "cancelada")
        except Exception as e:
            logger.error(f"Cancellation notice for reservation {reservation_id} failed: {e}")

    if payload.payment_status in PAID_STATUSES and payment_before not in PAID_STATUSES:
        try:
            await notifications.send_payment_confirmed(reservation)
        except Exception as e:
            logger.error(f"Itinerary email for reservation {reservation_id} failed: {e}")

    return reservation


@router.get("/{reservation_id}/timeline", response_model=List[TimelineEventResponse])
async def get_reservation_timeline(
    reservation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _load_for_user(db, reservation_id, user)
    return list_events(db, reservation_id)


@router.get("/{reservation_id}/passengers", response_model=List[PassengerResponse])
async def list_passengers(
    reservation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _load_for_user(db, reservation_id, user)
    return db.query(Passenger).filter(
        Passenger.reservation_id == reservation_id
    ).order_by(Passenger.id).all()


@router.post("/{reservation_id}/passengers", response_model=PassengerResponse, status_code=201)
async def add_passenger(
    reservation_id: int,
    payload: PassengerCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reservation = _load_for_user(db, reservation_id, user)

    if reservation.status in SEAT_RELEASING_STATUSES:
        raise HTTPException(status_code=400, detail="Reservation is cancelled")

    existing = db.query(Passenger).filter(Passenger.reservation_id == reservation_id).count()
    if existing >= reservation.number_of_passengers:
        raise HTTPException(
            status_code=400,
            detail=f"Reservation already has {existing} of {reservation.number_of_passengers} passengers",
        )

    passenger = Passenger(reservation_id=reservation_id, **payload.model_dump())
    db.add(passenger)
    db.flush()
    record_event(
        db,
        reservation_id,
        "passenger_added",
        f"Passenger {passenger.full_name} added",
        performed_by=user.id,
        metadata={"passenger_id": passenger.id},
    )
    db.commit()
    db.refresh(passenger)
    return passenger
