from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, Text, JSON, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tourdesk.database import Base


class Tour(Base):
    """Sellable product template. Seats are sold per Departure."""
    __tablename__ = "tours"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    location = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration = Column(String(64), nullable=False, default="")
    max_passengers = Column(Integer, nullable=False)

    # Legacy aggregate, kept in step with departure counters by the inventory ledger
    reserved_seats = Column(Integer, nullable=False, default=0)

    min_deposit_percentage = Column(Numeric(5, 2), nullable=True)
    images = Column(JSON, default=list)
    featured = Column(Boolean, default=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    departures = relationship("Departure", back_populates="tour")

    __table_args__ = (
        CheckConstraint("reserved_seats >= 0", name="ck_tour_reserved_seats_non_negative"),
    )
