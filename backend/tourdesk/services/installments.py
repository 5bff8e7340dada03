"""
Payment plans: a deposit plus evenly split installments, with manually
recorded payments driving the reservation's payment_status.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tourdesk.config import get_settings
from tourdesk.models import (
    InstallmentStatus,
    PaymentInstallment,
    PaymentStatus,
    PAID_STATUSES,
    Reservation,
    ReservationStatus,
)
from tourdesk.services.errors import InstallmentNotFound, InstallmentValidationError
from tourdesk.services.reservation_service import (
    SEAT_RELEASING_STATUSES,
    get_reservation,
    update_status,
    utcnow,
)
from tourdesk.services.timeline import record_event

logger = logging.getLogger(__name__)
settings = get_settings()

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def list_installments(db: Session, reservation_id: int) -> list[PaymentInstallment]:
    return db.query(PaymentInstallment).filter(
        PaymentInstallment.reservation_id == reservation_id
    ).order_by(PaymentInstallment.installment_number, PaymentInstallment.id).all()


def get_installment(db: Session, installment_id: int) -> PaymentInstallment:
    installment = db.query(PaymentInstallment).filter(PaymentInstallment.id == installment_id).first()
    if installment is None:
        raise InstallmentNotFound(installment_id)
    return installment


def paid_total(db: Session, reservation_id: int) -> Decimal:
    total = db.query(func.coalesce(func.sum(PaymentInstallment.amount_due), 0)).filter(
        PaymentInstallment.reservation_id == reservation_id,
        PaymentInstallment.status == InstallmentStatus.PAID,
    ).scalar()
    return _money(total or 0)


def _deposit_percentage(reservation: Reservation) -> Decimal:
    tour = reservation.tour
    if tour is not None and tour.min_deposit_percentage is not None:
        return Decimal(tour.min_deposit_percentage)
    return Decimal(str(settings.min_deposit_percentage))


def generate_payment_installments(
    db: Session,
    reservation: Reservation,
    number_of_installments: Optional[int] = None,
    performed_by: Optional[int] = None,
) -> list[PaymentInstallment]:
    """
    Build the plan: installment 0 is the deposit due at payment_due_date, the
    balance is split over number_of_installments each due interval_days after
    the previous one. The last installment absorbs rounding.
    """
    if number_of_installments is None:
        number_of_installments = settings.default_installments
    if number_of_installments < 1:
        raise InstallmentValidationError("At least one installment is required")
    if reservation.status in SEAT_RELEASING_STATUSES:
        raise InstallmentValidationError("Cannot create a payment plan for a cancelled reservation")

    existing = db.query(PaymentInstallment).filter(
        PaymentInstallment.reservation_id == reservation.id
    ).count()
    if existing:
        raise InstallmentValidationError(
            f"Reservation {reservation.reservation_code} already has {existing} installment(s)"
        )

    total = _money(reservation.total_price)
    deposit_pct = _deposit_percentage(reservation)
    deposit = _money(total * deposit_pct / 100)
    remaining = total - deposit
    per_installment = _money(remaining / number_of_installments)
    remaining_pct = Decimal(100) - deposit_pct

    base_date = reservation.payment_due_date or utcnow()
    interval = timedelta(days=settings.installment_interval_days)

    installments = [
        PaymentInstallment(
            reservation_id=reservation.id,
            installment_number=0,
            amount_due=deposit,
            percentage_due=deposit_pct,
            due_date=base_date,
            status=InstallmentStatus.PENDING,
            description=f"Deposit ({deposit_pct:g}%)",
        )
    ]

    allocated = deposit
    for i in range(1, number_of_installments + 1):
        if i == number_of_installments:
            amount = total - allocated
        else:
            amount = per_installment
        allocated += amount
        installments.append(PaymentInstallment(
            reservation_id=reservation.id,
            installment_number=i,
            amount_due=amount,
            percentage_due=_money(remaining_pct / number_of_installments),
            due_date=base_date + interval * i,
            status=InstallmentStatus.PENDING,
            description=f"Installment {i} of {number_of_installments}",
        ))

    try:
        db.add_all(installments)
        record_event(
            db,
            reservation.id,
            "installments_generated",
            f"Payment plan generated: deposit {deposit} + {number_of_installments} installment(s)",
            performed_by=performed_by,
            metadata={"total": str(total), "deposit": str(deposit), "installments": number_of_installments},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Generated {len(installments)} installments for reservation {reservation.reservation_code}"
    )
    return list_installments(db, reservation.id)


def create_installment(
    db: Session,
    reservation_id: int,
    amount_due: Decimal,
    due_date: datetime,
    description: Optional[str] = None,
    performed_by: Optional[int] = None,
) -> PaymentInstallment:
    reservation = get_reservation(db, reservation_id)
    if amount_due is None or Decimal(amount_due) <= 0:
        raise InstallmentValidationError("amount_due must be positive")

    last_number = db.query(func.max(PaymentInstallment.installment_number)).filter(
        PaymentInstallment.reservation_id == reservation_id
    ).scalar()

    installment = PaymentInstallment(
        reservation_id=reservation.id,
        installment_number=0 if last_number is None else last_number + 1,
        amount_due=_money(amount_due),
        due_date=due_date,
        status=InstallmentStatus.PENDING,
        description=description,
    )
    try:
        db.add(installment)
        db.flush()
        record_event(
            db,
            reservation_id,
            "installment_created",
            f"Installment of {installment.amount_due} added, due {due_date:%Y-%m-%d}",
            performed_by=performed_by,
            metadata={"installment_id": installment.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(installment)
    return installment


def reconcile_payment_status(
    db: Session,
    reservation_id: int,
    performed_by: Optional[int] = None,
) -> Reservation:
    """Derive payment_status from recorded installment payments."""
    reservation = get_reservation(db, reservation_id, refresh=True)
    paid = paid_total(db, reservation_id)
    total = _money(reservation.total_price)

    if paid >= total and total > 0:
        target = PaymentStatus.COMPLETED
    elif paid > 0:
        target = PaymentStatus.PARTIAL
    else:
        target = PaymentStatus.PENDING

    current = reservation.payment_status
    if current == target or (current in PAID_STATUSES and target == PaymentStatus.COMPLETED):
        return reservation
    if current in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
        logger.info(
            f"Reservation {reservation.reservation_code} payment is {current.value}, not reconciling"
        )
        return reservation

    return update_status(db, reservation_id, payment_status=target, performed_by=performed_by)


def mark_installment_paid(
    db: Session,
    installment_id: int,
    paid_by: Optional[int] = None,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
    exchange_rate: Optional[Decimal] = None,
    paid_at: Optional[datetime] = None,
) -> PaymentInstallment:
    installment = get_installment(db, installment_id)
    if installment.status == InstallmentStatus.PAID:
        raise InstallmentValidationError(f"Installment {installment_id} is already paid")

    reservation = installment.reservation
    if reservation.status in SEAT_RELEASING_STATUSES:
        raise InstallmentValidationError("Cannot record a payment on a cancelled reservation")

    try:
        installment.status = InstallmentStatus.PAID
        installment.paid_at = paid_at or utcnow()
        installment.paid_by = paid_by
        installment.payment_method = payment_method
        installment.payment_reference = payment_reference
        installment.exchange_rate = exchange_rate
        record_event(
            db,
            installment.reservation_id,
            "payment_recorded",
            f"Payment of {installment.amount_due} recorded for installment {installment.installment_number}",
            performed_by=paid_by,
            metadata={
                "installment_id": installment.id,
                "amount": str(installment.amount_due),
                "method": payment_method,
                "reference": payment_reference,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    reconcile_payment_status(db, installment.reservation_id, performed_by=paid_by)
    db.refresh(installment)
    return installment


def delete_installment(db: Session, installment_id: int, performed_by: Optional[int] = None) -> None:
    installment = get_installment(db, installment_id)
    if installment.status == InstallmentStatus.PAID:
        raise InstallmentValidationError("Paid installments cannot be deleted")

    reservation_id = installment.reservation_id
    try:
        record_event(
            db,
            reservation_id,
            "installment_deleted",
            f"Installment {installment.installment_number} of {installment.amount_due} removed",
            performed_by=performed_by,
        )
        db.delete(installment)
        db.commit()
    except Exception:
        db.rollback()
        raise


def mark_overdue_installments(db: Session, now: Optional[datetime] = None) -> int:
    """Flag unpaid installments past their due date. Returns how many changed."""
    now = now or utcnow()
    overdue = db.query(PaymentInstallment).join(Reservation).filter(
        PaymentInstallment.status == InstallmentStatus.PENDING,
        PaymentInstallment.due_date < now,
        Reservation.status.notin_(list(SEAT_RELEASING_STATUSES) + [ReservationStatus.COMPLETED]),
    ).all()

    try:
        for installment in overdue:
            installment.status = InstallmentStatus.OVERDUE
        db.commit()
    except Exception:
        db.rollback()
        raise

    if overdue:
        logger.info(f"Marked {len(overdue)} installment(s) overdue")
    return len(overdue)
