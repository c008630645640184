# ticketing/infrastructure/repositories/group_repository.py

from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from ticketing.infrastructure.db.models import (
    Booking,
    Event,
    GroupBooking,
    GroupChatMessage,
    GroupInvitation,
    GroupMember,
    SeatingAssignment,
    TicketTier,
)
from ticketing.domain.codes import new_invite_code
from ticketing.domain.exceptions import CodeCollisionError, FailedPreconditionError
from ticketing.domain.state_machine import (
    GroupBookingStateMachine,
    GroupBookingStatus,
    InvitationStateMachine,
    InvitationStatus,
)

INVITE_CODE_ATTEMPTS = 5


class GroupRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_invite_code(
        self,
        invite_code: str,
        for_update: bool = False,
    ) -> GroupBooking | None:
        stmt = select(GroupBooking).where(GroupBooking.invite_code == invite_code)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, group_id: str, for_update: bool = False) -> GroupBooking | None:
        stmt = select(GroupBooking).where(GroupBooking.id == group_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def unused_invite_code(self) -> str:
        for _ in range(INVITE_CODE_ATTEMPTS):
            code = new_invite_code()
            if self.get_by_invite_code(code) is None:
                return code
        raise CodeCollisionError("Could not allocate a unique invite code")

    def add(self, group: GroupBooking) -> GroupBooking:
        self.db.add(group)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise CodeCollisionError("Invite code collision") from exc
        return group

    def transition(
        self,
        group: GroupBooking,
        new_status: GroupBookingStatus,
        **values,
    ) -> GroupBooking:
        GroupBookingStateMachine.validate_transition(group.status, new_status)

        stmt = (
            update(GroupBooking)
            .where(GroupBooking.id == group.id)
            .where(GroupBooking.status == group.status)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Group booking was modified concurrently")
        return self._reload(group.id)

    def find_member_by_email(self, group_id: str, email: str) -> GroupMember | None:
        stmt = (
            select(GroupMember)
            .where(GroupMember.group_booking_id == group_id)
            .where(GroupMember.email == email)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def is_member_booking(self, group_id: str, booking_id: str) -> bool:
        stmt = (
            select(GroupMember.id)
            .where(GroupMember.group_booking_id == group_id)
            .where(GroupMember.booking_id == booking_id)
        )
        return self.db.execute(stmt).first() is not None

    def total_booked(self, group_id: str) -> int:
        stmt = select(func.coalesce(func.sum(GroupMember.quantity), 0)).where(
            GroupMember.group_booking_id == group_id
        )
        return int(self.db.execute(stmt).scalar_one())

    def complimentary_used(self, group_id: str) -> int:
        stmt = (
            select(func.coalesce(func.sum(GroupMember.quantity), 0))
            .where(GroupMember.group_booking_id == group_id)
            .where(GroupMember.is_complimentary.is_(True))
        )
        return int(self.db.execute(stmt).scalar_one())

    def add_member(self, member: GroupMember) -> GroupMember:
        self.db.add(member)
        self.db.flush()
        return member

    def members_with_tiers(self, group_id: str) -> list[tuple[GroupMember, TicketTier]]:
        stmt = (
            select(GroupMember, TicketTier)
            .join(TicketTier, GroupMember.ticket_tier_id == TicketTier.id)
            .where(GroupMember.group_booking_id == group_id)
            .order_by(GroupMember.joined_at, GroupMember.id)
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def members_with_bookings(self, group_id: str) -> list[tuple[GroupMember, Booking]]:
        stmt = (
            select(GroupMember, Booking)
            .join(Booking, GroupMember.booking_id == Booking.id)
            .where(GroupMember.group_booking_id == group_id)
            .order_by(GroupMember.name, GroupMember.id)
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def replace_seat(
        self,
        group_id: str,
        booking_id: str,
        section: str | None,
        row_number: str | None,
        seat_number: str | None,
    ) -> SeatingAssignment:
        self.db.execute(
            delete(SeatingAssignment)
            .where(SeatingAssignment.group_booking_id == group_id)
            .where(SeatingAssignment.booking_id == booking_id)
        )
        seat = SeatingAssignment(
            group_booking_id=group_id,
            booking_id=booking_id,
            section=section,
            row_number=row_number,
            seat_number=seat_number,
        )
        self.db.add(seat)
        self.db.flush()
        return seat

    def seating(self, group_id: str) -> list[SeatingAssignment]:
        stmt = (
            select(SeatingAssignment)
            .where(SeatingAssignment.group_booking_id == group_id)
            .order_by(SeatingAssignment.section, SeatingAssignment.row_number, SeatingAssignment.seat_number)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add_message(
        self,
        group_id: str,
        sender_email: str,
        sender_name: str,
        message: str,
        message_type: str = "system",
    ) -> GroupChatMessage:
        chat_message = GroupChatMessage(
            group_booking_id=group_id,
            sender_email=sender_email,
            sender_name=sender_name,
            message=message,
            message_type=message_type,
        )
        self.db.add(chat_message)
        return chat_message

    def messages(self, group_id: str) -> list[GroupChatMessage]:
        stmt = (
            select(GroupChatMessage)
            .where(GroupChatMessage.group_booking_id == group_id)
            .order_by(GroupChatMessage.created_at, GroupChatMessage.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def message_page(self, group_id: str, limit: int, offset: int) -> list[GroupChatMessage]:
        """The newest ``limit`` messages after skipping ``offset``, oldest first."""
        stmt = (
            select(GroupChatMessage)
            .where(GroupChatMessage.group_booking_id == group_id)
            .order_by(GroupChatMessage.created_at.desc(), GroupChatMessage.id.desc())
            .limit(limit)
            .offset(offset)
        )
        page = list(self.db.execute(stmt).scalars().all())
        page.reverse()
        return page

    def count_messages(self, group_id: str) -> int:
        stmt = select(func.count(GroupChatMessage.id)).where(
            GroupChatMessage.group_booking_id == group_id
        )
        return int(self.db.execute(stmt).scalar_one())

    def resize(
        self,
        group: GroupBooking,
        max_size: int,
        estimated_size: int,
        discount_percentage: int,
        complimentary_tickets: int,
    ) -> GroupBooking:
        stmt = (
            update(GroupBooking)
            .where(GroupBooking.id == group.id)
            .where(GroupBooking.status == GroupBookingStatus.ACTIVE)
            .values(
                max_size=max_size,
                estimated_size=estimated_size,
                discount_percentage=discount_percentage,
                complimentary_tickets=complimentary_tickets,
            )
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Group booking was modified concurrently")
        return self._reload(group.id)

    def remove_member_booking(self, group_id: str, booking_id: str) -> None:
        self.db.execute(
            delete(SeatingAssignment)
            .where(SeatingAssignment.group_booking_id == group_id)
            .where(SeatingAssignment.booking_id == booking_id)
        )
        self.db.execute(
            delete(GroupMember)
            .where(GroupMember.group_booking_id == group_id)
            .where(GroupMember.booking_id == booking_id)
        )

    # -----------------------------
    # Invitations
    # -----------------------------
    def find_invitation(self, group_id: str, email: str) -> GroupInvitation | None:
        stmt = (
            select(GroupInvitation)
            .where(GroupInvitation.group_booking_id == group_id)
            .where(GroupInvitation.email == email)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def add_invitation(
        self,
        group_id: str,
        email: str,
        name: str | None,
        invited_by: str,
    ) -> GroupInvitation:
        invitation = GroupInvitation(
            group_booking_id=group_id,
            email=email,
            name=name,
            invited_by=invited_by,
            status=InvitationStatus.PENDING,
        )
        self.db.add(invitation)
        self.db.flush()
        return invitation

    def respond_to_invitation(
        self,
        invitation: GroupInvitation,
        new_status: InvitationStatus,
    ) -> GroupInvitation:
        InvitationStateMachine.validate_transition(invitation.status, new_status)

        stmt = (
            update(GroupInvitation)
            .where(GroupInvitation.id == invitation.id)
            .where(GroupInvitation.status == invitation.status)
            .values(status=new_status, responded_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Invitation was modified concurrently")

        stmt = (
            select(GroupInvitation)
            .where(GroupInvitation.id == invitation.id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()

    # -----------------------------
    # Per-user listing
    # -----------------------------
    def organized_by(self, email: str) -> list[tuple[GroupBooking, Event]]:
        stmt = (
            select(GroupBooking, Event)
            .join(Event, GroupBooking.event_id == Event.id)
            .where(GroupBooking.organizer_email == email)
            .order_by(GroupBooking.created_at.desc(), GroupBooking.id)
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def joined_by(self, email: str) -> list[tuple[GroupBooking, Event]]:
        stmt = (
            select(GroupBooking, Event)
            .join(Event, GroupBooking.event_id == Event.id)
            .join(GroupMember, GroupMember.group_booking_id == GroupBooking.id)
            .where(GroupMember.email == email)
            .where(GroupBooking.organizer_email != email)
            .order_by(GroupMember.joined_at.desc(), GroupBooking.id)
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def invited(self, email: str) -> list[tuple[GroupBooking, Event]]:
        joined = (
            select(GroupMember.id)
            .where(GroupMember.group_booking_id == GroupBooking.id)
            .where(GroupMember.email == email)
            .exists()
        )
        stmt = (
            select(GroupBooking, Event)
            .join(Event, GroupBooking.event_id == Event.id)
            .join(GroupInvitation, GroupInvitation.group_booking_id == GroupBooking.id)
            .where(GroupInvitation.email == email)
            .where(GroupInvitation.status == InvitationStatus.PENDING)
            .where(GroupBooking.organizer_email != email)
            .where(~joined)
            .order_by(GroupInvitation.invited_at.desc(), GroupBooking.id)
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def _reload(self, group_id: str) -> GroupBooking:
        stmt = (
            select(GroupBooking)
            .where(GroupBooking.id == group_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()
