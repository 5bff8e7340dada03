from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
from tourdesk.database import get_db
from tourdesk.models import Tour, Departure, Reservation, User
from tourdesk.schemas import TourCreate, TourResponse, TourUpdate
from tourdesk.api.deps import require_admin

router = APIRouter()

# Nullable columns an update may clear; explicit nulls on the rest are ignored
CLEARABLE_FIELDS = {"min_deposit_percentage"}


def _get_tour(db: Session, tour_id: int) -> Tour:
    tour = db.query(Tour).filter(Tour.id == tour_id).first()
    if not tour:
        raise HTTPException(status_code=404, detail="Tour not found")
    return tour


@router.get("", response_model=List[TourResponse])
async def list_tours(
    featured_only: bool = False,
    db: Session = Depends(get_db)
):
    query = db.query(Tour)
    if featured_only:
        query = query.filter(Tour.featured == True)
    return query.order_by(Tour.id).all()


@router.post("", response_model=TourResponse, status_code=201)
async def create_tour(
    tour: TourCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    db_tour = Tour(**tour.model_dump(), reserved_seats=0)
    db.add(db_tour)
    db.commit()
    db.refresh(db_tour)
    return db_tour


@router.get("/{tour_id}", response_model=TourResponse)
async def get_tour(
    tour_id: int,
    db: Session = Depends(get_db)
):
    return _get_tour(db, tour_id)


@router.put("/{tour_id}", response_model=TourResponse)
async def update_tour(
    tour_id: int,
    tour_update: TourUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tour = _get_tour(db, tour_id)

    update_data = {
        field: value
        for field, value in tour_update.model_dump(exclude_unset=True).items()
        if value is not None or field in CLEARABLE_FIELDS
    }
    for field, value in update_data.items():
        setattr(tour, field, value)

    db.commit()
    db.refresh(tour)
    return tour


@router.delete("/{tour_id}")
async def delete_tour(
    tour_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tour = _get_tour(db, tour_id)

    held = db.query(Departure).filter(
        Departure.tour_id == tour_id,
        Departure.reserved_seats > 0,
    ).count()
    if held or tour.reserved_seats > 0:
        raise HTTPException(status_code=400, detail="Tour has departures with reserved seats")
    if db.query(Reservation).filter(Reservation.tour_id == tour_id).count():
        raise HTTPException(status_code=400, detail="Tour has reservations and cannot be deleted")

    db.query(Departure).filter(Departure.tour_id == tour_id).delete(synchronize_session=False)
    db.delete(tour)
    db.commit()
    return {"status": "deleted", "id": tour_id}
