# src/domain/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Set

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING_VENDOR_CONFIRMATION = "pending_vendor_confirmation"
    PENDING_DEPOSIT_PAYMENT = "pending_deposit_payment"
    CONFIRMED = "confirmed"
    PENDING_FINAL_PAYMENT = "pending_final_payment"
    COMPLETED = "completed"
    CANCELLED_BY_COUPLE = "cancelled_by_couple"
    CANCELLED_BY_VENDOR = "cancelled_by_vendor"
    REJECTED = "rejected"


class PaymentType(str, Enum):
    DEPOSIT = "deposit"
    FINAL = "final"
    CANCELLATION_FEE = "cancellation_fee"


class RefundStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    PROCESSED = "processed"


CANCELLED_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.CANCELLED_BY_COUPLE,
    BookingStatus.CANCELLED_BY_VENDOR,
})

TERMINAL_STATUSES: FrozenSet[BookingStatus] = CANCELLED_STATUSES | {
    BookingStatus.REJECTED,
    BookingStatus.COMPLETED,
}

# Statuses in which a venue booking counts as a replacement for a cancelled one.
ACTIVE_VENUE_STATUSES: FrozenSet[BookingStatus] = frozenset({
    BookingStatus.PENDING_DEPOSIT_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.PENDING_FINAL_PAYMENT,
    BookingStatus.COMPLETED,
})


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING_VENDOR_CONFIRMATION: {
            BookingStatus.PENDING_DEPOSIT_PAYMENT,
            BookingStatus.REJECTED,
            BookingStatus.CANCELLED_BY_COUPLE,
            BookingStatus.CANCELLED_BY_VENDOR,
        },
        BookingStatus.PENDING_DEPOSIT_PAYMENT: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED_BY_COUPLE,
            BookingStatus.CANCELLED_BY_VENDOR,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.PENDING_FINAL_PAYMENT,
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_COUPLE,
            BookingStatus.CANCELLED_BY_VENDOR,
        },
        BookingStatus.PENDING_FINAL_PAYMENT: {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_COUPLE,
            BookingStatus.CANCELLED_BY_VENDOR,
        },
        BookingStatus.COMPLETED: set(),
        BookingStatus.CANCELLED_BY_COUPLE: set(),
        BookingStatus.CANCELLED_BY_VENDOR: set(),
        BookingStatus.REJECTED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
