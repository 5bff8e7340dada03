from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from tourdesk.database import get_db
from tourdesk.models import User
from tourdesk.schemas import (
    InstallmentCreate,
    InstallmentGenerate,
    InstallmentPayment,
    InstallmentResponse,
)
from tourdesk.services import installments as installment_service
from tourdesk.services import reservation_service
from tourdesk.services.errors import ReservationError
from tourdesk.api.deps import ensure_can_view, get_current_user, http_error, require_admin

router = APIRouter()


@router.get("/reservations/{reservation_id}/installments", response_model=List[InstallmentResponse])
async def list_installments(
    reservation_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        reservation = reservation_service.get_reservation(db, reservation_id)
    except ReservationError as e:
        raise http_error(e)
    ensure_can_view(reservation, user)
    return installment_service.list_installments(db, reservation_id)


@router.post(
    "/reservations/{reservation_id}/installments",
    response_model=InstallmentResponse,
    status_code=201,
)
async def create_installment(
    reservation_id: int,
    payload: InstallmentCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        return installment_service.create_installment(
            db,
            reservation_id,
            payload.amount_due,
            payload.due_date,
            description=payload.description,
            performed_by=admin.id,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)


@router.post(
    "/reservations/{reservation_id}/installments/generate",
    response_model=List[InstallmentResponse],
    status_code=201,
)
async def generate_installments(
    reservation_id: int,
    payload: InstallmentGenerate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        reservation = reservation_service.get_reservation(db, reservation_id)
        return installment_service.generate_payment_installments(
            db,
            reservation,
            payload.number_of_installments,
            performed_by=admin.id,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)


@router.put("/installments/{installment_id}/pay", response_model=InstallmentResponse)
async def pay_installment(
    installment_id: int,
    payload: InstallmentPayment,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        return installment_service.mark_installment_paid(
            db,
            installment_id,
            paid_by=admin.id,
            payment_method=payload.payment_method,
            payment_reference=payload.payment_reference,
            exchange_rate=payload.exchange_rate,
            paid_at=payload.paid_at,
        )
    except (ReservationError, ValueError) as e:
        raise http_error(e)


@router.delete("/installments/{installment_id}")
async def delete_installment(
    installment_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        installment_service.delete_installment(db, installment_id, performed_by=admin.id)
    except (ReservationError, ValueError) as e:
        raise http_error(e)
    return {"status": "deleted", "id": installment_id}
