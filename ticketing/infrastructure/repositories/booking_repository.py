# ticketing/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ticketing.infrastructure.db.models import Booking, Event, TicketTier
from ticketing.domain.codes import new_booking_code
from ticketing.domain.exceptions import CodeCollisionError, FailedPreconditionError
from ticketing.domain.state_machine import BookingStateMachine, BookingStatus

BOOKING_CODE_ATTEMPTS = 5


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, booking_code: str) -> Booking | None:
        stmt = select(Booking).where(Booking.booking_code == booking_code)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, booking_id: str) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_details(self, booking_code: str) -> tuple[Booking, Event, TicketTier] | None:
        stmt = (
            select(Booking, Event, TicketTier)
            .join(Event, Booking.event_id == Event.id)
            .join(TicketTier, Booking.ticket_tier_id == TicketTier.id)
            .where(Booking.booking_code == booking_code)
        )
        row = self.db.execute(stmt).one_or_none()
        if row is None:
            return None
        return row[0], row[1], row[2]

    def code_exists(self, booking_code: str) -> bool:
        stmt = select(Booking.id).where(Booking.booking_code == booking_code)
        return self.db.execute(stmt).first() is not None

    def unused_code(self) -> str:
        for _ in range(BOOKING_CODE_ATTEMPTS):
            code = new_booking_code()
            if not self.code_exists(code):
                return code
        raise CodeCollisionError("Could not allocate a unique booking code")

    def create_booking(
        self,
        event_id: str,
        ticket_tier_id: str,
        quantity: int,
        customer_email: str,
        customer_name: str,
        total_amount: int,
        group_booking_id: str | None = None,
    ) -> Booking:

        booking = Booking(
            event_id=event_id,
            ticket_tier_id=ticket_tier_id,
            quantity=quantity,
            customer_email=customer_email,
            customer_name=customer_name,
            total_amount=total_amount,
            booking_code=self.unused_code(),
            status=BookingStatus.CONFIRMED,
            group_booking_id=group_booking_id,
        )

        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # A concurrent insert took the same code between check and flush.
            raise CodeCollisionError("Booking code collision") from exc
        return booking

    def check_in(self, booking_code: str) -> Booking | None:
        """
        Atomic confirmed -> checked_in. None when no confirmed
        booking carries the code.
        """
        stmt = (
            update(Booking)
            .where(Booking.booking_code == booking_code)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .values(status=BookingStatus.CHECKED_IN)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            return None

        stmt = (
            select(Booking)
            .where(Booking.booking_code == booking_code)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()

    def transition(self, booking: Booking, new_status: BookingStatus) -> Booking:
        """
        Apply a legal transition as a compare-and-set on the status
        the caller observed, so two racing transitions cannot both win.
        """
        BookingStateMachine.validate_transition(booking.status, new_status)

        stmt = (
            update(Booking)
            .where(Booking.id == booking.id)
            .where(Booking.status == booking.status)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Booking was modified concurrently")

        stmt = (
            select(Booking)
            .where(Booking.id == booking.id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()
