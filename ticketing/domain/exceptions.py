
class TicketingError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticketing engine.
    """

    status_code: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(TicketingError):
    """Raised when a booking, tier, order, ticket or group is absent."""

    status_code = 404


class FailedPreconditionError(TicketingError):
    """Raised when an operation is attempted in the wrong state."""

    status_code = 409


class InvalidStateTransitionError(FailedPreconditionError):
    """
    Raised when an illegal lifecycle transition is attempted.
    """

    def __init__(self, entity: str, from_state: str, to_state: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal {entity} state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class ResourceExhaustedError(TicketingError):
    """Raised when capacity is insufficient."""

    status_code = 409


class InsufficientInventoryError(ResourceExhaustedError):
    """Raised when a tier cannot cover the requested quantity."""

    def __init__(self, available: int, tier_name: str | None = None):
        self.available = max(available, 0)
        self.tier_name = tier_name

        message = f"Only {self.available} tickets available"
        if tier_name:
            message = f"{message} for {tier_name}"
        super().__init__(message)


class PermissionDeniedError(TicketingError):
    """Raised when the caller may not act on a group it does not belong to."""

    status_code = 403


class InvalidArgumentError(TicketingError):
    """Raised for malformed requests, e.g. an empty order."""

    status_code = 400


class AlreadyExistsError(TicketingError):
    """Raised on a duplicate unique key."""

    status_code = 409


class CodeCollisionError(AlreadyExistsError):
    """A generated code or number clashed with one already stored. Safe to retry."""


class PaymentVerificationError(FailedPreconditionError):
    """Raised when the payment gateway rejects a payment confirmation."""
