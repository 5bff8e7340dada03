from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from tourdesk.models import InstallmentStatus


class InstallmentCreate(BaseModel):
    amount_due: Decimal = Field(gt=0)
    due_date: datetime
    description: Optional[str] = None


class InstallmentGenerate(BaseModel):
    number_of_installments: Optional[int] = Field(default=None, ge=1, le=24)


class InstallmentPayment(BaseModel):
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    exchange_rate: Optional[Decimal] = Field(default=None, gt=0)
    paid_at: Optional[datetime] = None


class InstallmentResponse(BaseModel):
    id: int
    reservation_id: int
    installment_number: int
    amount_due: Decimal
    percentage_due: Optional[Decimal]
    due_date: datetime
    status: InstallmentStatus
    description: Optional[str]
    paid_at: Optional[datetime]
    paid_by: Optional[int]
    payment_method: Optional[str]
    payment_reference: Optional[str]
    exchange_rate: Optional[Decimal]

    class Config:
        from_attributes = True
