import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ticketing.application.effects import PostCommitEffects, Schedule, booking_snapshot, run_now
from ticketing.application.transaction import run_atomic
from ticketing.domain.exceptions import (
    CodeCollisionError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
)
from ticketing.domain.pricing import effective_price
from ticketing.domain.state_machine import BookingStatus, EventStatus, GroupBookingStatus
from ticketing.infrastructure.db.models import Booking, Event, TicketTier
from ticketing.infrastructure.repositories.audit_repository import AuditRepository
from ticketing.infrastructure.repositories.booking_repository import BookingRepository
from ticketing.infrastructure.repositories.capacity_ledger import CapacityLedger
from ticketing.infrastructure.repositories.event_repository import EventRepository
from ticketing.infrastructure.repositories.group_repository import GroupRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingDetails:
    booking: Booking
    event: Event
    tier: TicketTier


class BookingService:
    """Application service coordinating the quick-booking workflow."""

    def __init__(
        self,
        db: Session,
        effects: PostCommitEffects | None = None,
        schedule: Schedule = run_now,
    ):
        self.db = db
        self.effects = effects
        self.schedule = schedule
        self.booking_repository = BookingRepository(db)
        self.event_repository = EventRepository(db)
        self.group_repository = GroupRepository(db)
        self.ledger = CapacityLedger(db)
        self.audit = AuditRepository(db)

    def book(
        self,
        event_id: str,
        ticket_tier_id: str,
        quantity: int,
        customer_email: str,
        customer_name: str,
    ) -> Booking:
        booking = run_atomic(
            self.db,
            lambda: self.reserve_booking(
                event_id=event_id,
                ticket_tier_id=ticket_tier_id,
                quantity=quantity,
                customer_email=customer_email,
                customer_name=customer_name,
            ),
            retry_on=(OperationalError, CodeCollisionError),
        )

        logger.info(
            "Booking confirmed. booking_code=%s event_id=%s tier_id=%s quantity=%s",
            booking.booking_code,
            booking.event_id,
            booking.ticket_tier_id,
            booking.quantity,
        )
        self.announce(booking)
        return booking

    def reserve_booking(
        self,
        event_id: str,
        ticket_tier_id: str,
        quantity: int,
        customer_email: str,
        customer_name: str,
        total_amount: int | None = None,
        group_booking_id: str | None = None,
    ) -> Booking:
        """
        Reserve capacity and insert a confirmed booking without
        committing. Callers own the transaction; group joins run
        this inside their own unit of work.
        """
        if quantity <= 0:
            raise InvalidArgumentError("Quantity must be positive")

        tier = self.ledger.get_tier(ticket_tier_id, event_id=event_id)
        if tier is None or not tier.is_active:
            raise NotFoundError("Ticket tier not found")

        event = self.event_repository.get_by_id(event_id)
        if event is None:
            raise NotFoundError("Event not found")
        if event.status == EventStatus.CANCELLED:
            raise FailedPreconditionError("Event has been cancelled")

        self.ledger.reserve(ticket_tier_id, quantity)

        if total_amount is None:
            unit_price = effective_price(tier, datetime.now(timezone.utc))
            total_amount = unit_price * quantity

        return self.booking_repository.create_booking(
            event_id=event_id,
            ticket_tier_id=ticket_tier_id,
            quantity=quantity,
            customer_email=customer_email,
            customer_name=customer_name,
            total_amount=total_amount,
            group_booking_id=group_booking_id,
        )

    def announce(self, booking: Booking) -> None:
        """Queue the post-commit email and fanout for a committed booking."""
        if self.effects is None:
            return
        self.schedule(self.effects.booking_confirmed, booking_snapshot(booking))

    def check_in(self, booking_code: str) -> Booking:
        def work() -> Booking:
            booking = self.booking_repository.check_in(booking_code)
            if booking is None:
                raise NotFoundError("Confirmed booking not found or already checked in")
            return booking

        booking = run_atomic(self.db, work)
        logger.info("Booking checked in. booking_code=%s", booking_code)
        return booking

    def get_details(self, booking_code: str) -> BookingDetails:
        row = self.booking_repository.get_details(booking_code)
        if row is None:
            raise NotFoundError("Booking not found")
        booking, event, tier = row
        return BookingDetails(booking=booking, event=event, tier=tier)

    def cancel(self, booking_code: str) -> Booking:
        def work() -> Booking:
            booking = self.booking_repository.get_by_code(booking_code)
            if booking is None:
                raise NotFoundError("Booking not found")

            if booking.group_booking_id is not None:
                self._leave_group(booking)

            previous = booking.status
            booking = self.booking_repository.transition(booking, BookingStatus.CANCELLED)
            self.ledger.release(booking.ticket_tier_id, booking.quantity)
            self.audit.log_action(
                action="booking.cancel",
                resource_type="booking",
                resource_id=booking.id,
                old_values={"status": previous.value},
                new_values={"status": booking.status.value},
            )
            return booking

        booking = run_atomic(self.db, work)
        logger.info("Booking cancelled. booking_code=%s", booking_code)
        return booking

    def _leave_group(self, booking: Booking) -> None:
        # Membership of a locked or closed group is frozen.
        group = self.group_repository.get_by_id(booking.group_booking_id, for_update=True)
        if group is None:
            return
        if group.status != GroupBookingStatus.ACTIVE:
            raise FailedPreconditionError("Bookings in a locked or closed group cannot be cancelled")
        self.group_repository.remove_member_booking(group.id, booking.id)
