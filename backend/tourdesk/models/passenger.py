from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tourdesk.database import Base
from tourdesk.models.types import value_enum
import enum


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Passenger(Base):
    __tablename__ = "passengers"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)

    full_name = Column(String(255), nullable=False)
    passport_number = Column(String(64), nullable=True)
    nationality = Column(String(64), nullable=True)
    date_of_birth = Column(DateTime, nullable=True)
    passport_image_url = Column(String(1024), nullable=True)

    # Independent of the reservation status
    document_status = Column(value_enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    document_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    reservation = relationship("Reservation", back_populates="passengers")
