"""
Reservation aggregate: creation, status transitions and automation bookkeeping.

create_atomic, create_bulk_atomic and cancel_atomic are the only paths that
move seats. Each runs the reservation write and the inventory ledger update
inside one session transaction and commits once at the end.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tourdesk.config import get_settings
from tourdesk.models import (
    Departure,
    DepartureStatus,
    Passenger,
    PaymentStatus,
    PAID_STATUSES,
    Reservation,
    ReservationStatus,
)
from tourdesk.services import inventory
from tourdesk.services.errors import (
    ConcurrentModification,
    DepartureNotFound,
    DepartureValidationError,
    InsufficientCapacity,
    InvalidTransition,
    ReservationNotFound,
)
from tourdesk.services.timeline import record_event

logger = logging.getLogger(__name__)
settings = get_settings()

CODE_PREFIX = "TD"
CODE_RETRY_ATTEMPTS = 3
CAS_ATTEMPTS = 3

# Statuses that free the reservation's seats when entered
SEAT_RELEASING_STATUSES = frozenset({
    ReservationStatus.CANCELLED,
    ReservationStatus.CANCELADA,
})

# Targets routed through cancel_atomic. VENCIDA is a soft step: seats stay held.
CANCELLATION_STATUSES = SEAT_RELEASING_STATUSES | {ReservationStatus.VENCIDA}

ALLOWED_TRANSITIONS = {
    ReservationStatus.PENDING: {
        ReservationStatus.APPROVED,
        ReservationStatus.CONFIRMED,
        ReservationStatus.VENCIDA,
        ReservationStatus.CANCELLED,
        ReservationStatus.CANCELADA,
    },
    ReservationStatus.APPROVED: {
        ReservationStatus.CONFIRMED,
        ReservationStatus.PENDING,
        ReservationStatus.VENCIDA,
        ReservationStatus.CANCELLED,
        ReservationStatus.CANCELADA,
    },
    ReservationStatus.CONFIRMED: {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
        ReservationStatus.CANCELADA,
    },
    ReservationStatus.COMPLETED: {
        ReservationStatus.CANCELLED,
    },
    # Manual recovery during the grace window keeps the held seats
    ReservationStatus.VENCIDA: {
        ReservationStatus.PENDING,
        ReservationStatus.APPROVED,
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELADA,
        ReservationStatus.CANCELLED,
    },
    # Seats are already free; switching between cancellation labels is bookkeeping only
    ReservationStatus.CANCELLED: {
        ReservationStatus.CANCELADA,
    },
    ReservationStatus.CANCELADA: {
        ReservationStatus.CANCELLED,
    },
}

AUTOMATION_FIELDS = frozenset({
    "last_reminder_sent",
    "admin_alert_sent",
    "trip_reminder_sent",
    "auto_cancel_at",
})


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_transition_allowed(current: ReservationStatus, target: ReservationStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, set())


def check_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if not is_transition_allowed(current, target):
        raise InvalidTransition(current, target)


def compute_payment_dates(
    departure_date: datetime,
    payment_deadline_days: int,
    grace_hours: Optional[int] = None,
) -> tuple[datetime, datetime]:
    """Return (payment_due_date, auto_cancel_at) for a departure."""
    if grace_hours is None:
        grace_hours = settings.auto_cancel_grace_hours
    payment_due_date = departure_date - timedelta(days=payment_deadline_days)
    auto_cancel_at = payment_due_date + timedelta(hours=grace_hours)
    return payment_due_date, auto_cancel_at


def generate_reservation_code(db: Session, year: int) -> str:
    """Next sequential code for the year, e.g. TD-2026-007."""
    prefix = f"{CODE_PREFIX}-{year}-"
    last_code = db.execute(
        select(Reservation.reservation_code)
        .where(Reservation.reservation_code.like(f"{prefix}%"))
        .order_by(func.length(Reservation.reservation_code).desc(), Reservation.reservation_code.desc())
        .limit(1)
    ).scalar()

    next_number = 1
    if last_code:
        try:
            next_number = int(last_code.rsplit("-", 1)[1]) + 1
        except ValueError:
            logger.warning(f"Unparseable reservation code {last_code}, restarting sequence")
    return f"{prefix}{next_number:03d}"


def get_reservation(db: Session, reservation_id: int, refresh: bool = False) -> Reservation:
    stmt = select(Reservation).where(Reservation.id == reservation_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    reservation = db.execute(stmt).scalar_one_or_none()
    if reservation is None:
        raise ReservationNotFound(reservation_id)
    return reservation


def _check_booking_size(passenger_count: int, passengers: list) -> None:
    if passenger_count is None or passenger_count <= 0:
        raise ValueError("number_of_passengers must be positive")
    if len(passengers) > passenger_count:
        raise ValueError(
            f"{len(passengers)} passengers supplied for a booking of {passenger_count}"
        )


def _insert_reservation(
    db: Session,
    data: dict,
    departure_id: int,
    passenger_count: int,
    passengers: list[dict],
    performed_by: Optional[int],
    description: str,
    now: datetime,
) -> Reservation:
    """Reserve seats, then insert the reservation, passengers and creation event. Does not commit."""
    inventory.reserve_seats(db, departure_id, passenger_count)

    departure = db.execute(
        select(Departure)
        .where(Departure.id == departure_id)
        .execution_options(populate_existing=True)
    ).scalar_one()

    if departure.status != DepartureStatus.ACTIVE:
        raise DepartureValidationError(
            f"Departure {departure_id} is {departure.status.value} and not open for booking"
        )

    payment_due_date, auto_cancel_at = compute_payment_dates(
        departure.departure_date, departure.payment_deadline_days
    )
    total_price = Decimal(departure.price) * passenger_count

    reservation = Reservation(
        reservation_code=generate_reservation_code(db, now.year),
        tour_id=departure.tour_id,
        departure_id=departure.id,
        user_id=data.get("user_id"),
        buyer_name=data.get("buyer_name"),
        buyer_email=data.get("buyer_email"),
        buyer_phone=data.get("buyer_phone"),
        reservation_date=now,
        departure_date=departure.departure_date,
        number_of_passengers=passenger_count,
        total_price=total_price,
        status=ReservationStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        payment_due_date=payment_due_date,
        auto_cancel_at=auto_cancel_at,
    )
    db.add(reservation)
    db.flush()

    for passenger_data in passengers:
        db.add(Passenger(reservation_id=reservation.id, **passenger_data))

    record_event(
        db,
        reservation.id,
        "reservation_created",
        description,
        performed_by=performed_by,
        metadata={
            "departure_id": departure.id,
            "passengers": passenger_count,
            "total_price": str(total_price),
        },
    )
    return reservation


def create_atomic(
    db: Session,
    data: dict,
    departure_id: int,
    passenger_count: int,
    passengers: Optional[list[dict]] = None,
    performed_by: Optional[int] = None,
    created_by_admin: bool = False,
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Reserve seats and insert the reservation in a single transaction.

    The conditional seat update runs first, so capacity is re-validated under
    the write even if the caller pre-checked availability. Raises
    InsufficientCapacity / DepartureNotFound with nothing persisted.
    """
    now = now or utcnow()
    passengers = passengers or []
    _check_booking_size(passenger_count, passengers)
    description = "Reservation created by administrator" if created_by_admin else "Reservation created by client"

    for attempt in range(1, CODE_RETRY_ATTEMPTS + 1):
        try:
            reservation = _insert_reservation(
                db, data, departure_id, passenger_count, passengers, performed_by, description, now
            )
            db.commit()

        except IntegrityError as e:
            db.rollback()
            if attempt == CODE_RETRY_ATTEMPTS:
                raise
            logger.warning(f"Reservation insert collided (attempt {attempt}), retrying: {e}")
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.reservation_code} created on departure {departure_id} "
            f"for {passenger_count} passenger(s)"
        )
        return reservation


def check_bulk_capacity(db: Session, items: list[dict]) -> list[dict]:
    """
    Sum requested seats per departure and compare with what is free now.

    Returns one entry per departure, in first-seen order, with `problem` set to
    "not_found", "inactive" or "insufficient" when the batch cannot be booked.
    Read-only: nothing is reserved.
    """
    requested = {}
    for item in items:
        departure_id = item["departure_id"]
        requested[departure_id] = requested.get(departure_id, 0) + item["number_of_passengers"]

    summary = []
    for departure_id, seats in requested.items():
        departure = db.execute(
            select(Departure)
            .where(Departure.id == departure_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if departure is None:
            available, problem = 0, "not_found"
        elif departure.status != DepartureStatus.ACTIVE:
            available, problem = departure.available_seats, "inactive"
        elif seats > departure.available_seats:
            available, problem = departure.available_seats, "insufficient"
        else:
            available, problem = departure.available_seats, None

        summary.append({
            "departure_id": departure_id,
            "requested": seats,
            "available": max(0, available),
            "problem": problem,
        })
    return summary


def _raise_bulk_problem(entry: dict) -> None:
    departure_id = entry["departure_id"]
    if entry["problem"] == "not_found":
        raise DepartureNotFound(departure_id)
    if entry["problem"] == "inactive":
        raise DepartureValidationError(f"Departure {departure_id} is not open for booking")
    if entry["problem"] == "insufficient":
        raise InsufficientCapacity(departure_id, entry["requested"], entry["available"])


def create_bulk_atomic(
    db: Session,
    items: list[dict],
    performed_by: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[Reservation]:
    """
    Create a batch of reservations in one transaction: either all are booked or none.

    Each item carries departure_id, number_of_passengers, the buyer fields,
    an optional user_id and an optional passengers list. Seats are pre-checked
    per departure on the summed request, then every item still goes through the
    conditional reserve_seats update.
    """
    if not items:
        raise ValueError("At least one reservation is required")
    now = now or utcnow()
    for item in items:
        _check_booking_size(item["number_of_passengers"], item.get("passengers") or [])

    for attempt in range(1, CODE_RETRY_ATTEMPTS + 1):
        try:
            for entry in check_bulk_capacity(db, items):
                _raise_bulk_problem(entry)

            created = [
                _insert_reservation(
                    db,
                    item,
                    item["departure_id"],
                    item["number_of_passengers"],
                    item.get("passengers") or [],
                    performed_by,
                    "Reservation created by administrator (bulk import)",
                    now,
                )
                for item in items
            ]
            db.commit()

        except IntegrityError as e:
            db.rollback()
            if attempt == CODE_RETRY_ATTEMPTS:
                raise
            logger.warning(f"Bulk reservation insert collided (attempt {attempt}), retrying: {e}")
            continue
        except Exception:
            db.rollback()
            raise

        for reservation in created:
            db.refresh(reservation)
        logger.info(f"Bulk import created {len(created)} reservation(s)")
        return created


def _status_change_description(old, new, performed_by: Optional[int], description: Optional[str]) -> str:
    if description:
        return description
    actor = "automatically" if performed_by is None else "by administrator"
    return f'Status changed from "{old.value}" to "{new.value}" {actor}'


def _record_payment_change(db, reservation_id, old, new, performed_by):
    actor = "automatically" if performed_by is None else "by administrator"
    record_event(
        db,
        reservation_id,
        "payment_status_changed",
        f'Payment status changed from "{old.value}" to "{new.value}" {actor}',
        performed_by=performed_by,
        metadata={"old_payment_status": old.value, "new_payment_status": new.value},
    )


def update_status(
    db: Session,
    reservation_id: int,
    status: Optional[ReservationStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    performed_by: Optional[int] = None,
    description: Optional[str] = None,
) -> Reservation:
    """State write for transitions with no inventory effect."""
    if status in SEAT_RELEASING_STATUSES:
        raise ValueError(f"'{status.value}' releases seats, use cancel_atomic")

    try:
        for _ in range(CAS_ATTEMPTS):
            reservation = get_reservation(db, reservation_id, refresh=True)
            old_status = reservation.status
            old_payment = reservation.payment_status

            values = {}
            if status is not None and status != old_status:
                check_transition(old_status, status)
                values["status"] = status
            if payment_status is not None and payment_status != old_payment:
                values["payment_status"] = payment_status

            if not values:
                return reservation

            result = db.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == old_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                continue

            if "status" in values:
                record_event(
                    db,
                    reservation_id,
                    "status_changed",
                    _status_change_description(old_status, status, performed_by, description),
                    performed_by=performed_by,
                    metadata={"old_status": old_status.value, "new_status": status.value},
                )
            if "payment_status" in values:
                _record_payment_change(db, reservation_id, old_payment, payment_status, performed_by)

            db.commit()
            return get_reservation(db, reservation_id, refresh=True)
    except Exception:
        db.rollback()
        raise

    raise ConcurrentModification(reservation_id)


def cancel_atomic(
    db: Session,
    reservation_id: int,
    status: ReservationStatus,
    payment_status: Optional[PaymentStatus] = None,
    performed_by: Optional[int] = None,
    description: Optional[str] = None,
) -> Reservation:
    """
    Move a reservation into a cancellation-class status.

    Seats are released in the same transaction only when entering a
    seat-releasing status from one that still held them, so repeated calls
    never release twice. VENCIDA keeps the seats.
    """
    if status not in CANCELLATION_STATUSES:
        raise ValueError(f"'{status.value}' is not a cancellation status")

    try:
        for _ in range(CAS_ATTEMPTS):
            reservation = get_reservation(db, reservation_id, refresh=True)
            old_status = reservation.status
            old_payment = reservation.payment_status

            payment_changed = payment_status is not None and payment_status != old_payment
            if old_status == status and not payment_changed:
                logger.debug(f"Reservation {reservation_id} already {status.value}, nothing to do")
                return reservation

            check_transition(old_status, status)

            values = {"status": status}
            if payment_changed:
                values["payment_status"] = payment_status

            result = db.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.status == old_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                continue

            seats_released = 0
            if status in SEAT_RELEASING_STATUSES and old_status not in SEAT_RELEASING_STATUSES:
                inventory.release_seats(db, reservation.departure_id, reservation.number_of_passengers)
                seats_released = reservation.number_of_passengers

            if old_status != status:
                record_event(
                    db,
                    reservation_id,
                    "status_changed",
                    _status_change_description(old_status, status, performed_by, description),
                    performed_by=performed_by,
                    metadata={
                        "old_status": old_status.value,
                        "new_status": status.value,
                        "seats_released": seats_released,
                    },
                )
            if payment_changed:
                _record_payment_change(db, reservation_id, old_payment, payment_status, performed_by)

            db.commit()
            if seats_released:
                logger.info(
                    f"Reservation {reservation_id} -> {status.value}, released {seats_released} seat(s) "
                    f"on departure {reservation.departure_id}"
                )
            return get_reservation(db, reservation_id, refresh=True)
    except Exception:
        db.rollback()
        raise

    raise ConcurrentModification(reservation_id)


def auto_cancel_atomic(db: Session, reservation_id: int, status: ReservationStatus) -> Reservation:
    """Scheduler entry point: vencida (soft) or cancelada (releases seats)."""
    if status == ReservationStatus.VENCIDA:
        description = "Payment deadline passed, reservation marked as vencida"
    else:
        description = "Grace period expired, reservation cancelled and seats released"
    return cancel_atomic(db, reservation_id, status, description=description)


def change_status(
    db: Session,
    reservation_id: int,
    status: Optional[ReservationStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    performed_by: Optional[int] = None,
) -> Reservation:
    """Route a requested change to cancel_atomic or update_status."""
    if status in CANCELLATION_STATUSES:
        return cancel_atomic(db, reservation_id, status, payment_status, performed_by=performed_by)
    return update_status(db, reservation_id, status, payment_status, performed_by=performed_by)


def update_automation_fields(db: Session, reservation_id: int, **fields) -> bool:
    """
    Persist scheduler bookkeeping. Returns False when nothing was written.

    last_reminder_sent is a ratchet: it is only stored if it is closer to the
    deadline than the current value.
    """
    unknown = set(fields) - AUTOMATION_FIELDS
    if unknown:
        raise ValueError(f"Not an automation field: {', '.join(sorted(unknown))}")
    if not fields:
        return False

    stmt = update(Reservation).where(Reservation.id == reservation_id)
    if "last_reminder_sent" in fields:
        stmt = stmt.where(or_(
            Reservation.last_reminder_sent.is_(None),
            Reservation.last_reminder_sent > fields["last_reminder_sent"],
        ))

    try:
        result = db.execute(stmt.values(**fields).execution_options(synchronize_session=False))
        db.commit()
    except Exception:
        db.rollback()
        raise

    if result.rowcount != 1:
        # Distinguish a missing row from a refused ratchet
        get_reservation(db, reservation_id)
        return False
    return True


ONE_SHOT_FLAGS = ("admin_alert_sent", "trip_reminder_sent")


def _flip_flag(db: Session, reservation_id: int, flag: str, value: bool) -> bool:
    if flag not in ONE_SHOT_FLAGS:
        raise ValueError(f"Not a one-shot flag: {flag}")
    column = getattr(Reservation, flag)
    try:
        result = db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, column.is_(not value))
            .values({flag: value})
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount == 1


def claim_flag(db: Session, reservation_id: int, flag: str) -> bool:
    """Set a once-only boolean flag; True if this call flipped it."""
    return _flip_flag(db, reservation_id, flag, True)


def release_flag(db: Session, reservation_id: int, flag: str) -> bool:
    """Undo a claim whose notification was not delivered."""
    return _flip_flag(db, reservation_id, flag, False)


def release_reminder_claim(
    db: Session,
    reservation_id: int,
    claimed: int,
    previous: Optional[int],
) -> bool:
    """
    Put last_reminder_sent back to `previous` after an undelivered reminder.

    Only applies while the column still holds `claimed`, so a later tier
    claimed in the meantime is never rolled back.
    """
    try:
        result = db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.last_reminder_sent == claimed)
            .values(last_reminder_sent=previous)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result.rowcount == 1


def get_reservations_for_reminders(db: Session, now: Optional[datetime] = None) -> list[Reservation]:
    now = now or utcnow()
    return db.query(Reservation).filter(
        Reservation.payment_status == PaymentStatus.PENDING,
        Reservation.status.in_([ReservationStatus.PENDING, ReservationStatus.APPROVED]),
        Reservation.payment_due_date.isnot(None),
        Reservation.payment_due_date > now,
    ).order_by(Reservation.payment_due_date).all()


def get_reservations_for_cancellation(db: Session, now: Optional[datetime] = None) -> list[Reservation]:
    now = now or utcnow()
    return db.query(Reservation).filter(
        Reservation.payment_status == PaymentStatus.PENDING,
        Reservation.status.in_([
            ReservationStatus.PENDING,
            ReservationStatus.APPROVED,
            ReservationStatus.VENCIDA,
        ]),
        Reservation.payment_due_date.isnot(None),
        Reservation.payment_due_date <= now,
    ).order_by(Reservation.payment_due_date).all()


def get_reservations_for_trip_reminders(db: Session, now: Optional[datetime] = None) -> list[Reservation]:
    now = now or utcnow()
    return db.query(Reservation).filter(
        Reservation.status == ReservationStatus.CONFIRMED,
        Reservation.payment_status.in_(PAID_STATUSES),
        Reservation.trip_reminder_sent.is_(False),
        Reservation.departure_date > now,
    ).order_by(Reservation.departure_date).all()
