"""Domain errors raised by the reservation services and translated to HTTP by the routers."""


class ReservationError(Exception):
    """Base class for reservation domain errors."""


class NotFoundError(ReservationError):
    entity = "Resource"

    def __init__(self, entity_id=None):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found" + (f": {entity_id}" if entity_id is not None else ""))


class TourNotFound(NotFoundError):
    entity = "Tour"


class DepartureNotFound(NotFoundError):
    entity = "Departure"


class ReservationNotFound(NotFoundError):
    entity = "Reservation"


class InstallmentNotFound(NotFoundError):
    entity = "Installment"


class ReminderRuleNotFound(NotFoundError):
    entity = "Reminder rule"


class InsufficientCapacity(ReservationError):
    def __init__(self, departure_id, requested: int, available: int):
        self.departure_id = departure_id
        self.requested = requested
        self.available = max(0, available)
        super().__init__(
            f"Only {self.available} seats left (requested {requested})"
        )


class InvalidTransition(ReservationError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot change reservation status from '{_value(current)}' to '{_value(target)}'"
        )


class ConcurrentModification(ReservationError):
    def __init__(self, reservation_id):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation {reservation_id} was modified concurrently, retry the request")


class ValidationError(ReservationError):
    """Business-rule validation failure (maps to 400)."""


class DepartureValidationError(ValidationError):
    pass


class InstallmentValidationError(ValidationError):
    pass


def _value(status):
    return getattr(status, "value", status)
