from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import List, Optional
from tourdesk.database import get_db
from tourdesk.models import Tour, Departure, Reservation, User
from tourdesk.schemas import DepartureCreate, DepartureResponse, DepartureUpdate
from tourdesk.services.reservation_service import utcnow
from tourdesk.api.deps import require_admin

router = APIRouter()

# Nullable columns an update may clear; explicit nulls on the rest are ignored
CLEARABLE_FIELDS = {"return_date"}


def _get_departure(db: Session, departure_id: int) -> Departure:
    departure = db.query(Departure).filter(Departure.id == departure_id).first()
    if not departure:
        raise HTTPException(status_code=404, detail="Departure not found")
    return departure


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.get("", response_model=List[DepartureResponse])
async def list_departures(
    tour_id: Optional[int] = None,
    upcoming_only: bool = False,
    db: Session = Depends(get_db)
):
    query = db.query(Departure)
    if tour_id is not None:
        query = query.filter(Departure.tour_id == tour_id)
    if upcoming_only:
        query = query.filter(Departure.departure_date > utcnow())
    return query.order_by(Departure.departure_date).all()


@router.get("/{departure_id}", response_model=DepartureResponse)
async def get_departure(
    departure_id: int,
    db: Session = Depends(get_db)
):
    return _get_departure(db, departure_id)


@router.post("", response_model=DepartureResponse, status_code=201)
async def create_departure(
    departure: DepartureCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    if not db.query(Tour).filter(Tour.id == departure.tour_id).first():
        raise HTTPException(status_code=404, detail="Tour not found")

    data = departure.model_dump()
    data["departure_date"] = _naive_utc(data["departure_date"])
    data["return_date"] = _naive_utc(data["return_date"])

    if data["departure_date"] <= utcnow():
        raise HTTPException(status_code=400, detail="Departure date must be in the future")
    if data["return_date"] is not None and data["return_date"] < data["departure_date"]:
        raise HTTPException(status_code=400, detail="Return date must be after the departure date")

    db_departure = Departure(**data, reserved_seats=0)
    db.add(db_departure)
    db.commit()
    db.refresh(db_departure)
    return db_departure


@router.put("/{departure_id}", response_model=DepartureResponse)
async def update_departure(
    departure_id: int,
    departure_update: DepartureUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    departure = _get_departure(db, departure_id)
    update_data = {
        field: value
        for field, value in departure_update.model_dump(exclude_unset=True).items()
        if value is not None or field in CLEARABLE_FIELDS
    }

    if "departure_date" in update_data:
        update_data["departure_date"] = _naive_utc(update_data["departure_date"])
        if update_data["departure_date"] != departure.departure_date and update_data["departure_date"] <= utcnow():
            raise HTTPException(status_code=400, detail="Departure date must be in the future")
    if "return_date" in update_data:
        update_data["return_date"] = _naive_utc(update_data["return_date"])

    new_total = update_data.pop("total_seats", None)
    if new_total is not None:
        # Checked against the live counter so a concurrent booking cannot be stranded
        result = db.execute(
            update(Departure)
            .where(Departure.id == departure_id, Departure.reserved_seats <= new_total)
            .values(total_seats=new_total)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            db.refresh(departure)
            raise HTTPException(
                status_code=400,
                detail=f"Total seats cannot be lower than the {departure.reserved_seats} already reserved",
            )

    for field, value in update_data.items():
        setattr(departure, field, value)

    db.commit()
    db.refresh(departure)
    return departure


@router.delete("/{departure_id}")
async def delete_departure(
    departure_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    departure = _get_departure(db, departure_id)

    if departure.reserved_seats > 0:
        raise HTTPException(status_code=400, detail="Departure has reserved seats and cannot be deleted")
    if db.query(Reservation).filter(Reservation.departure_id == departure_id).count():
        raise HTTPException(status_code=400, detail="Departure has reservations and cannot be deleted")

    db.delete(departure)
    db.commit()
    return {"status": "deleted", "id": departure_id}
