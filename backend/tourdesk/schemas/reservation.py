from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any

from tourdesk.models import ReservationStatus, PaymentStatus, DocumentStatus


class PassengerBase(BaseModel):
    full_name: str
    passport_number: Optional[str] = None
    nationality: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    passport_image_url: Optional[str] = None


class PassengerCreate(PassengerBase):
    pass


class PassengerResponse(PassengerBase):
    id: int
    reservation_id: int
    document_status: DocumentStatus
    document_notes: Optional[str] = None

    class Config:
        from_attributes = True


class DocumentStatusUpdate(BaseModel):
    document_status: DocumentStatus
    document_notes: Optional[str] = None


class ReservationCreate(BaseModel):
    departure_id: int
    number_of_passengers: int = Field(gt=0)
    buyer_name: Optional[str] = None
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    passengers: list[PassengerCreate] = []

    @model_validator(mode="after")
    def check_passenger_list(self):
        if len(self.passengers) > self.number_of_passengers:
            raise ValueError("More passengers listed than number_of_passengers")
        return self


class BulkReservationItem(ReservationCreate):
    user_id: Optional[int] = None


class BulkReservationRequest(BaseModel):
    reservations: list[BulkReservationItem] = Field(min_length=1)


class BulkDepartureCheck(BaseModel):
    departure_id: int
    requested: int
    available: int
    problem: Optional[str] = None


class BulkValidationResponse(BaseModel):
    valid: bool
    departures: list[BulkDepartureCheck]


class ReservationStatusUpdate(BaseModel):
    status: Optional[ReservationStatus] = None
    payment_status: Optional[PaymentStatus] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.status is None and self.payment_status is None:
            raise ValueError("status or payment_status is required")
        return self


class ReservationResponse(BaseModel):
    id: int
    reservation_code: str
    tour_id: int
    departure_id: int
    user_id: Optional[int]
    buyer_name: Optional[str]
    buyer_email: Optional[str]
    buyer_phone: Optional[str]
    reservation_date: Optional[datetime]
    departure_date: datetime
    number_of_passengers: int
    total_price: Decimal
    status: ReservationStatus
    payment_status: PaymentStatus
    payment_due_date: Optional[datetime]
    auto_cancel_at: Optional[datetime]
    last_reminder_sent: Optional[int]
    admin_alert_sent: bool
    trip_reminder_sent: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReservationDetail(ReservationResponse):
    passengers: list[PassengerResponse] = []


class TimelineEventResponse(BaseModel):
    id: int
    reservation_id: int
    event_type: str
    description: str
    performed_by: Optional[int]
    performed_by_name: str
    metadata: dict[str, Any] = {}
    created_at: Optional[datetime]
