from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from tourdesk.models import DepartureStatus


class TourBase(BaseModel):
    title: str
    description: str = ""
    location: str
    price: Decimal = Field(ge=0)
    duration: str = ""
    max_passengers: int = Field(gt=0)
    min_deposit_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    images: list[str] = []
    featured: bool = False


class TourCreate(TourBase):
    pass


class TourUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    duration: Optional[str] = None
    max_passengers: Optional[int] = Field(default=None, gt=0)
    min_deposit_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    images: Optional[list[str]] = None
    featured: Optional[bool] = None


class TourResponse(TourBase):
    id: int
    reserved_seats: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DepartureCreate(BaseModel):
    tour_id: int
    departure_date: datetime
    return_date: Optional[datetime] = None
    total_seats: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    payment_deadline_days: int = Field(default=30, ge=0)
    status: DepartureStatus = DepartureStatus.ACTIVE


class DepartureUpdate(BaseModel):
    """reserved_seats is deliberately absent: only bookings move it."""
    departure_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    total_seats: Optional[int] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    payment_deadline_days: Optional[int] = Field(default=None, ge=0)
    status: Optional[DepartureStatus] = None


class DepartureResponse(BaseModel):
    id: int
    tour_id: int
    departure_date: datetime
    return_date: Optional[datetime]
    total_seats: int
    reserved_seats: int
    available_seats: int
    price: Decimal
    payment_deadline_days: int
    status: DepartureStatus
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
