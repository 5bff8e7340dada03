from tourdesk.schemas.tour import (
    TourCreate, TourUpdate, TourResponse,
    DepartureCreate, DepartureUpdate, DepartureResponse,
)
from tourdesk.schemas.reservation import (
    ReservationCreate, ReservationStatusUpdate, ReservationResponse, ReservationDetail,
    PassengerCreate, PassengerResponse, DocumentStatusUpdate, TimelineEventResponse,
    BulkReservationItem, BulkReservationRequest, BulkDepartureCheck, BulkValidationResponse,
)
from tourdesk.schemas.installment import (
    InstallmentCreate, InstallmentGenerate, InstallmentPayment, InstallmentResponse,
)
from tourdesk.schemas.reminder_rule import ReminderRuleCreate, ReminderRuleUpdate, ReminderRuleResponse

__all__ = [
    "TourCreate", "TourUpdate", "TourResponse",
    "DepartureCreate", "DepartureUpdate", "DepartureResponse",
    "ReservationCreate", "ReservationStatusUpdate", "ReservationResponse", "ReservationDetail",
    "PassengerCreate", "PassengerResponse", "DocumentStatusUpdate", "TimelineEventResponse",
    "BulkReservationItem", "BulkReservationRequest", "BulkDepartureCheck", "BulkValidationResponse",
    "InstallmentCreate", "InstallmentGenerate", "InstallmentPayment", "InstallmentResponse",
    "ReminderRuleCreate", "ReminderRuleUpdate", "ReminderRuleResponse",
]
