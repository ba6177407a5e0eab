

class WeddingPlatformError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking lifecycle engine.
    """


class InvalidStateTransitionError(WeddingPlatformError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class BookingNotFoundError(WeddingPlatformError):
    """Raised when a booking id does not resolve to a record."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


class InvalidFeeTierError(WeddingPlatformError):
    """Raised when a cancellation fee schedule cannot be interpreted."""


class ReconciliationInProgressError(WeddingPlatformError):
    """Raised when a manual run is requested while a cycle is in flight."""
