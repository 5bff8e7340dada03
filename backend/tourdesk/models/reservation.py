from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tourdesk.database import Base
from tourdesk.models.types import value_enum
import enum


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    # Hard terminal state reached through the automatic sweep; seats released
    CANCELADA = "cancelada"
    # Payment deadline passed; seats still held until auto_cancel_at
    VENCIDA = "vencida"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REFUNDED = "refunded"


PAID_STATUSES = (PaymentStatus.COMPLETED, PaymentStatus.CONFIRMED)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    reservation_code = Column(String(32), unique=True, nullable=False)

    tour_id = Column(Integer, ForeignKey("tours.id"), nullable=False, index=True)
    departure_id = Column(Integer, ForeignKey("departures.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Buyer contact, bookings may be anonymous
    buyer_name = Column(String(255), nullable=True)
    buyer_email = Column(String(255), nullable=True)
    buyer_phone = Column(String(64), nullable=True)

    reservation_date = Column(DateTime, server_default=func.now())
    departure_date = Column(DateTime, nullable=False)
    number_of_passengers = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    status = Column(value_enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False, index=True)
    payment_status = Column(value_enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)

    payment_due_date = Column(DateTime, nullable=True, index=True)
    auto_cancel_at = Column(DateTime, nullable=True)

    # Smallest days-before-deadline tier already notified; None = nothing sent yet
    last_reminder_sent = Column(Integer, nullable=True)
    admin_alert_sent = Column(Boolean, default=False, nullable=False)
    trip_reminder_sent = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    tour = relationship("Tour")
    departure = relationship("Departure", back_populates="reservations")
    user = relationship("User")
    passengers = relationship("Passenger", back_populates="reservation", cascade="all, delete-orphan", passive_deletes=True)
    installments = relationship(
        "PaymentInstallment",
        back_populates="reservation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PaymentInstallment.installment_number",
    )
    timeline_events = relationship(
        "ReservationTimelineEvent",
        back_populates="reservation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ReservationTimelineEvent.id",
    )

    __table_args__ = (
        CheckConstraint("number_of_passengers > 0", name="ck_reservation_passengers_positive"),
    )

    @property
    def contact_email(self):
        if self.user is not None:
            return self.user.email
        return self.buyer_email

    @property
    def contact_name(self):
        if self.user is not None:
            return self.user.name
        return self.buyer_name or "Cliente"
