# tests/unit/test_state_machine.py

import pytest

from ticketing.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    EventStateMachine,
    EventStatus,
    GroupBookingStateMachine,
    GroupBookingStatus,
    InvitationStateMachine,
    InvitationStatus,
    OrderStateMachine,
    PaymentStatus,
    TicketStateMachine,
    TicketStatus,
)
from ticketing.domain.exceptions import FailedPreconditionError, InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_booking_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CHECKED_IN,
    )


def test_confirmed_booking_can_be_cancelled():
    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    )


def test_order_paths():
    assert OrderStateMachine.can_transition(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
    assert OrderStateMachine.can_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)
    assert OrderStateMachine.can_transition(PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)


def test_ticket_leaves_active_once():
    assert TicketStateMachine.get_allowed_transitions(TicketStatus.ACTIVE) == {
        TicketStatus.USED,
        TicketStatus.CANCELLED,
        TicketStatus.REFUNDED,
    }


def test_group_lock_then_complete():
    assert GroupBookingStateMachine.can_transition(
        GroupBookingStatus.ACTIVE,
        GroupBookingStatus.LOCKED,
    )
    assert GroupBookingStateMachine.can_transition(
        GroupBookingStatus.LOCKED,
        GroupBookingStatus.COMPLETED,
    )


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_check_in_pending_booking():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.CHECKED_IN,
        )


def test_completed_order_cannot_complete_again():
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        OrderStateMachine.validate_transition(
            PaymentStatus.COMPLETED,
            PaymentStatus.COMPLETED,
        )

    assert exc_info.value.entity == "order"
    assert exc_info.value.from_state == "completed"


@pytest.mark.parametrize(
    "status",
    [TicketStatus.USED, TicketStatus.CANCELLED, TicketStatus.REFUNDED],
)
def test_ticket_terminal_states(status):
    assert TicketStateMachine.is_terminal(status)

    with pytest.raises(InvalidStateTransitionError):
        TicketStateMachine.validate_transition(status, TicketStatus.ACTIVE)


def test_locked_group_cannot_reopen_or_relock():
    with pytest.raises(InvalidStateTransitionError):
        GroupBookingStateMachine.validate_transition(
            GroupBookingStatus.LOCKED,
            GroupBookingStatus.ACTIVE,
        )

    with pytest.raises(InvalidStateTransitionError):
        GroupBookingStateMachine.validate_transition(
            GroupBookingStatus.LOCKED,
            GroupBookingStatus.LOCKED,
        )


def test_cancelled_event_is_terminal():
    assert EventStateMachine.is_terminal(EventStatus.CANCELLED)
    assert not EventStateMachine.can_transition(EventStatus.PUBLISHED, EventStatus.DRAFT)


def test_answered_invitation_is_final():
    assert InvitationStateMachine.can_transition(InvitationStatus.PENDING, InvitationStatus.ACCEPTED)
    assert InvitationStateMachine.is_terminal(InvitationStatus.ACCEPTED)
    assert InvitationStateMachine.is_terminal(InvitationStatus.DECLINED)

    with pytest.raises(InvalidStateTransitionError):
        InvitationStateMachine.validate_transition(
            InvitationStatus.ACCEPTED,
            InvitationStatus.DECLINED,
        )


def test_illegal_transition_is_a_failed_precondition():
    with pytest.raises(FailedPreconditionError):
        BookingStateMachine.validate_transition(
            BookingStatus.CANCELLED,
            BookingStatus.CONFIRMED,
        )


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.CONFIRMED,
        )


def test_status_of_another_entity_is_rejected():
    with pytest.raises(TypeError):
        TicketStateMachine.can_transition(BookingStatus.CONFIRMED, TicketStatus.USED)
