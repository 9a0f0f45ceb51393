

class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticket booking engine.

    Every subclass carries a stable machine-readable code and
    says whether the caller may retry the same request.
    """

    code = "BOOKING_ENGINE_ERROR"
    retryable = False
    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class InvalidStateTransitionError(BookingEngineError):
    """
    Raised when an illegal booking or payment state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class CapacityExceededError(BookingEngineError):
    """Raised when the requested quantity exceeds the ticket's availability."""

    code = "CAPACITY_EXCEEDED"
    retryable = True
    http_status = 409

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"The requested quantity ({requested}) exceeds available tickets ({available})."
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["requested"] = self.requested
        payload["available"] = self.available
        return payload


class LockTimeoutError(BookingEngineError):
    """Raised when the ticket lock could not be acquired in time."""

    code = "LOCK_TIMEOUT"
    retryable = True
    http_status = 503

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Timed out waiting for a lock on {resource}. Please retry.")


class DuplicateActiveBookingError(BookingEngineError):
    code = "DUPLICATE_ACTIVE_BOOKING"
    http_status = 409

    def __init__(self, user_id: str, ticket_id: str):
        self.user_id = user_id
        self.ticket_id = ticket_id
        super().__init__("You already have an active booking for this ticket.")


class EventAlreadyOccurredError(BookingEngineError):
    code = "EVENT_ALREADY_OCCURRED"
    http_status = 422

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Cannot book tickets for past events.")


class InvalidQuantityError(BookingEngineError):
    code = "INVALID_QUANTITY"
    http_status = 422

    def __init__(self, quantity: int, maximum: int):
        self.quantity = quantity
        self.maximum = maximum
        super().__init__(f"Quantity must be between 1 and {maximum}, got {quantity}.")


class AlreadyCancelledError(BookingEngineError):
    """Raised on every cancel after the first one."""

    code = "ALREADY_CANCELLED"
    http_status = 400

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("Booking is already cancelled.")


class BookingNotAmendableError(BookingEngineError):
    code = "BOOKING_NOT_AMENDABLE"
    http_status = 409

    def __init__(self, booking_id: str, status: str):
        self.booking_id = booking_id
        self.status = status
        super().__init__(f"Only pending bookings can change quantity (status is {status}).")


class PaymentAlreadyExistsError(BookingEngineError):
    code = "PAYMENT_ALREADY_EXISTS"
    http_status = 409

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("Payment already exists for this booking.")


class NoPaymentFoundError(BookingEngineError):
    code = "NO_PAYMENT_FOUND"
    http_status = 404

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("No payment found for this booking.")


class AlreadyRefundedError(BookingEngineError):
    code = "ALREADY_REFUNDED"
    http_status = 409

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__("Payment already refunded.")


class NotRefundableError(BookingEngineError):
    code = "NOT_REFUNDABLE"
    http_status = 409

    def __init__(self, payment_id: str, status: str):
        self.payment_id = payment_id
        self.status = status
        super().__init__("Can only refund successful payments.")


class EventNotFoundError(BookingEngineError):
    code = "EVENT_NOT_FOUND"
    http_status = 404

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Event not found")


class TicketNotFoundError(BookingEngineError):
    code = "TICKET_NOT_FOUND"
    http_status = 404

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__("Ticket not found")


class BookingNotFoundError(BookingEngineError):
    code = "BOOKING_NOT_FOUND"
    http_status = 404

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("Booking not found")


class NotAuthorizedError(BookingEngineError):
    code = "NOT_AUTHORIZED"
    http_status = 403

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"You do not have permission to {action}.")


class OutboxEventNotFoundError(BookingEngineError):
    code = "OUTBOX_EVENT_NOT_FOUND"
    http_status = 404

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Outbox event not found")


class DatabaseUnavailableError(BookingEngineError):
    """Raised when the database fails for a reason other than a lock wait."""

    code = "DATABASE_UNAVAILABLE"
    retryable = True
    http_status = 503

    def __init__(self):
        super().__init__("The database is temporarily unavailable. Please retry.")
