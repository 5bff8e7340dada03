# SQLAlchemy models
from tourdesk.models.user import User, UserRole
from tourdesk.models.tour import Tour
from tourdesk.models.departure import Departure, DepartureStatus
from tourdesk.models.reservation import Reservation, ReservationStatus, PaymentStatus, PAID_STATUSES
from tourdesk.models.passenger import Passenger, DocumentStatus
from tourdesk.models.installment import PaymentInstallment, InstallmentStatus
from tourdesk.models.timeline import ReservationTimelineEvent
from tourdesk.models.reminder_rule import ReminderRule
from tourdesk.models.email import EmailTemplate, EmailLog, EmailStatus

__all__ = [
    "User",
    "Tour",
    "Departure",
    "Reservation",
    "Passenger",
    "PaymentInstallment",
    "ReservationTimelineEvent",
    "ReminderRule",
    "EmailTemplate",
    "EmailLog",
    # Enums
    "UserRole",
    "DepartureStatus",
    "ReservationStatus",
    "PaymentStatus",
    "PAID_STATUSES",
    "DocumentStatus",
    "InstallmentStatus",
    "EmailStatus",
]
