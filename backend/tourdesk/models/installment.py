from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from tourdesk.database import Base
from tourdesk.models.types import value_enum
import enum


class InstallmentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentInstallment(Base):
    __tablename__ = "payment_installments"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)

    installment_number = Column(Integer, nullable=False, default=0)  # 0 = deposit
    amount_due = Column(Numeric(10, 2), nullable=False)
    percentage_due = Column(Numeric(5, 2), nullable=True)
    due_date = Column(DateTime, nullable=False)
    status = Column(value_enum(InstallmentStatus), default=InstallmentStatus.PENDING, nullable=False)
    description = Column(String(255), nullable=True)

    # Manually recorded payment
    paid_at = Column(DateTime, nullable=True)
    paid_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    payment_method = Column(String(64), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    exchange_rate = Column(Numeric(12, 6), nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    reservation = relationship("Reservation", back_populates="installments")
