from sqlalchemy import Column, Integer, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tourdesk.database import Base
from tourdesk.models.types import value_enum
import enum


class DepartureStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class Departure(Base):
    """
    One dated occurrence of a Tour with its own seat inventory.

    reserved_seats is only ever changed through services.inventory.
    """
    __tablename__ = "departures"

    id = Column(Integer, primary_key=True, index=True)
    tour_id = Column(Integer, ForeignKey("tours.id"), nullable=False, index=True)

    departure_date = Column(DateTime, nullable=False, index=True)
    return_date = Column(DateTime, nullable=True)

    total_seats = Column(Integer, nullable=False)
    reserved_seats = Column(Integer, nullable=False, default=0)

    price = Column(Numeric(10, 2), nullable=False)
    payment_deadline_days = Column(Integer, nullable=False, default=30)
    status = Column(value_enum(DepartureStatus), default=DepartureStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    tour = relationship("Tour", back_populates="departures")
    reservations = relationship("Reservation", back_populates="departure")

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_departure_total_seats_positive"),
        CheckConstraint("reserved_seats >= 0", name="ck_departure_reserved_seats_non_negative"),
        CheckConstraint("reserved_seats <= total_seats", name="ck_departure_reserved_lte_total"),
    )

    @property
    def available_seats(self) -> int:
        return self.total_seats - self.reserved_seats
