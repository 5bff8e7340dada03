"""
Seat inventory ledger.

Every change to Departure.reserved_seats goes through reserve_seats/release_seats.
Both are single conditional UPDATE statements and never commit: they join the
caller's transaction so the counter moves together with the reservation write.
"""

import logging

from sqlalchemy import update, case, select
from sqlalchemy.orm import Session

from tourdesk.models import Departure, Tour
from tourdesk.services.errors import DepartureNotFound, InsufficientCapacity

logger = logging.getLogger(__name__)


def _check_count(count: int):
    if count is None or count <= 0:
        raise ValueError(f"Seat count must be positive, got {count}")


def _decrement_floored(column, count: int):
    return case((column >= count, column - count), else_=0)


def reserve_seats(db: Session, departure_id: int, count: int) -> None:
    """Atomically take `count` seats or raise InsufficientCapacity."""
    _check_count(count)

    result = db.execute(
        update(Departure)
        .where(
            Departure.id == departure_id,
            Departure.reserved_seats + count <= Departure.total_seats,
        )
        .values(reserved_seats=Departure.reserved_seats + count)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        row = db.execute(
            select(Departure.total_seats, Departure.reserved_seats).where(Departure.id == departure_id)
        ).first()
        if row is None:
            raise DepartureNotFound(departure_id)
        available = row.total_seats - row.reserved_seats
        logger.info(
            f"Capacity check failed for departure {departure_id}: requested {count}, available {available}"
        )
        raise InsufficientCapacity(departure_id, count, available)

    tour_id = db.execute(select(Departure.tour_id).where(Departure.id == departure_id)).scalar_one()
    db.execute(
        update(Tour)
        .where(Tour.id == tour_id)
        .values(reserved_seats=Tour.reserved_seats + count)
        .execution_options(synchronize_session=False)
    )


def release_seats(db: Session, departure_id: int, count: int) -> None:
    """Give back `count` seats, floored at zero."""
    _check_count(count)

    result = db.execute(
        update(Departure)
        .where(Departure.id == departure_id)
        .values(reserved_seats=_decrement_floored(Departure.reserved_seats, count))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise DepartureNotFound(departure_id)

    tour_id = db.execute(select(Departure.tour_id).where(Departure.id == departure_id)).scalar_one()
    db.execute(
        update(Tour)
        .where(Tour.id == tour_id)
        .values(reserved_seats=_decrement_floored(Tour.reserved_seats, count))
        .execution_options(synchronize_session=False)
    )


def available_seats(db: Session, departure_id: int) -> int:
    row = db.execute(
        select(Departure.total_seats, Departure.reserved_seats).where(Departure.id == departure_id)
    ).first()
    if row is None:
        raise DepartureNotFound(departure_id)
    return row.total_seats - row.reserved_seats
