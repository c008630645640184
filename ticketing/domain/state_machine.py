# ticketing/domain/state_machine.py

from enum import Enum
from typing import Dict, Set, Type

from ticketing.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TicketStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class GroupBookingStatus(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class StateMachine:
    """
    Central lifecycle controller for one entity.
    Subclasses declare the legal transitions; everything
    else is rejected uniformly.
    """

    entity: str = "entity"
    status_type: Type[Enum] = Enum
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]] = {}

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                entity=cls.entity,
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status: Enum) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls.status_type):
            raise TypeError(
                f"Expected {cls.status_type.__name__}, got {type(status)}"
            )


class BookingStateMachine(StateMachine):
    entity = "booking"
    status_type = BookingStatus
    _ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CHECKED_IN,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CHECKED_IN: set(),
        BookingStatus.CANCELLED: set(),
    }


class OrderStateMachine(StateMachine):
    entity = "order"
    status_type = PaymentStatus
    _ALLOWED_TRANSITIONS = {
        PaymentStatus.PENDING: {
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
        },
        PaymentStatus.COMPLETED: {
            PaymentStatus.REFUNDED,
        },
        PaymentStatus.FAILED: set(),
        PaymentStatus.REFUNDED: set(),
    }


class TicketStateMachine(StateMachine):
    entity = "ticket"
    status_type = TicketStatus
    _ALLOWED_TRANSITIONS = {
        TicketStatus.ACTIVE: {
            TicketStatus.USED,
            TicketStatus.CANCELLED,
            TicketStatus.REFUNDED,
        },
        TicketStatus.USED: set(),
        TicketStatus.CANCELLED: set(),
        TicketStatus.REFUNDED: set(),
    }


class GroupBookingStateMachine(StateMachine):
    entity = "group booking"
    status_type = GroupBookingStatus
    _ALLOWED_TRANSITIONS = {
        GroupBookingStatus.ACTIVE: {
            GroupBookingStatus.LOCKED,
            GroupBookingStatus.CANCELLED,
        },
        GroupBookingStatus.LOCKED: {
            GroupBookingStatus.COMPLETED,
            GroupBookingStatus.CANCELLED,
        },
        GroupBookingStatus.COMPLETED: set(),
        GroupBookingStatus.CANCELLED: set(),
    }


class EventStateMachine(StateMachine):
    entity = "event"
    status_type = EventStatus
    _ALLOWED_TRANSITIONS = {
        EventStatus.DRAFT: {
            EventStatus.PUBLISHED,
            EventStatus.CANCELLED,
        },
        EventStatus.PUBLISHED: {
            EventStatus.CANCELLED,
        },
        EventStatus.CANCELLED: set(),
    }


class InvitationStateMachine(StateMachine):
    entity = "invitation"
    status_type = InvitationStatus
    _ALLOWED_TRANSITIONS = {
        InvitationStatus.PENDING: {
            InvitationStatus.ACCEPTED,
            InvitationStatus.DECLINED,
        },
        InvitationStatus.ACCEPTED: set(),
        InvitationStatus.DECLINED: set(),
    }
