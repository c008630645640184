# ticketing/application/effects.py

import logging
from typing import Any, Callable

from ticketing.infrastructure.db.models import Booking
from ticketing.infrastructure.notifications import EmailNotifier
from ticketing.infrastructure.realtime.fanout import BookingFanout

logger = logging.getLogger(__name__)

Schedule = Callable[..., Any]


def run_now(func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    func(*args, **kwargs)


def booking_snapshot(booking: Booking) -> dict:
    """Plain-data copy of a committed booking, safe to hand to another thread."""
    return {
        "id": booking.id,
        "event_id": booking.event_id,
        "ticket_tier_id": booking.ticket_tier_id,
        "quantity": booking.quantity,
        "customer_email": booking.customer_email,
        "customer_name": booking.customer_name,
        "total_amount": booking.total_amount,
        "booking_code": booking.booking_code,
        "status": booking.status.value,
        "group_booking_id": booking.group_booking_id,
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
    }


class PostCommitEffects:
    """
    Side effects of an already committed booking or order. Each one is
    best-effort: a failure is logged and never reaches the caller.
    """

    def __init__(self, notifier: EmailNotifier, fanout: BookingFanout):
        self.notifier = notifier
        self.fanout = fanout

    def booking_confirmed(self, booking: dict) -> None:
        try:
            self.notifier.send_confirmation_email(
                booking_code=booking["booking_code"],
                customer_email=booking["customer_email"],
                customer_name=booking["customer_name"],
            )
        except Exception:
            logger.exception(
                "Confirmation email failed. booking_code=%s",
                booking["booking_code"],
            )

        try:
            delivered = self.fanout.publish(booking)
            logger.debug(
                "Published booking. booking_code=%s event_id=%s subscribers=%s",
                booking["booking_code"],
                booking["event_id"],
                delivered,
            )
        except Exception:
            logger.exception(
                "Booking publish failed. booking_code=%s",
                booking["booking_code"],
            )

    def tickets_issued(
        self,
        user_id: str,
        order_number: str,
        ticket_count: int,
        total_amount: int,
    ) -> None:
        try:
            self.notifier.send_ticket_confirmation(
                user_id=user_id,
                order_number=order_number,
                ticket_count=ticket_count,
                total_amount=total_amount,
            )
        except Exception:
            logger.exception(
                "Ticket confirmation failed. order_number=%s",
                order_number,
            )

    def group_invitation(
        self,
        recipient_email: str,
        recipient_name: str,
        inviter_name: str,
        group_name: str,
        invite_code: str,
    ) -> None:
        try:
            self.notifier.send_group_invitation(
                recipient_email=recipient_email,
                recipient_name=recipient_name,
                inviter_name=inviter_name,
                group_name=group_name,
                invite_code=invite_code,
            )
        except Exception:
            logger.exception("Group invitation failed. invite_code=%s", invite_code)
