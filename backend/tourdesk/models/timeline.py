from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey
from sqlalchemy.orm import relationship
from tourdesk.database import Base
from datetime import datetime, timezone


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ReservationTimelineEvent(Base):
    """Append-only audit trail. Rows are never updated; they go away only with their reservation."""
    __tablename__ = "reservation_timeline_events"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)

    event_type = Column(String(64), nullable=False)
    description = Column(Text, nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # None = automated
    event_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=_utcnow, nullable=False)

    reservation = relationship("Reservation", back_populates="timeline_events")
    performer = relationship("User")
