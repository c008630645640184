import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ticketing.application.booking_service import BookingService
from ticketing.application.effects import PostCommitEffects, Schedule, run_now
from ticketing.application.transaction import run_atomic
from ticketing.domain.exceptions import (
    AlreadyExistsError,
    CodeCollisionError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ResourceExhaustedError,
)
from ticketing.domain.pricing import as_utc, calculate_group_benefits, effective_price, group_discount
from ticketing.domain.state_machine import BookingStatus, EventStatus, GroupBookingStatus, InvitationStatus
from ticketing.infrastructure.db.models import (
    Booking,
    Event,
    GroupBooking,
    GroupChatMessage,
    GroupInvitation,
    GroupMember,
    SeatingAssignment,
)
from ticketing.infrastructure.repositories.audit_repository import AuditRepository
from ticketing.infrastructure.repositories.capacity_ledger import CapacityLedger
from ticketing.infrastructure.repositories.event_repository import EventRepository
from ticketing.infrastructure.repositories.group_repository import GroupRepository

logger = logging.getLogger(__name__)

GROUP_BOOKING_CUTOFF_HOURS = int(os.getenv("GROUP_BOOKING_CUTOFF_HOURS", "48"))

SYSTEM_SENDER_EMAIL = "system"
SYSTEM_SENDER_NAME = "System"

SEATING_STATUSES = {GroupBookingStatus.ACTIVE, GroupBookingStatus.LOCKED}

CHAT_PAGE_SIZE = 50
MAX_CHAT_PAGE_SIZE = 100


@dataclass(frozen=True)
class SeatRequest:
    booking_id: str
    section: str | None = None
    row_number: str | None = None
    seat_number: str | None = None


@dataclass(frozen=True)
class JoinResult:
    booking: Booking
    group_booking_id: str
    discount_applied: int
    final_amount: int
    is_complimentary: bool


@dataclass(frozen=True)
class MemberView:
    member: GroupMember
    ticket_tier_name: str


@dataclass(frozen=True)
class GroupBookingView:
    group: GroupBooking
    event: Event
    members: list[MemberView]
    seating: list[SeatingAssignment]
    messages: list[GroupChatMessage]
    total_booked: int
    total_paid: int
    remaining_slots: int
    can_still_join: bool


@dataclass(frozen=True)
class CheckInEntry:
    name: str
    email: str
    quantity: int
    booking_code: str
    checked_in: bool


@dataclass(frozen=True)
class GroupCheckIn:
    group: GroupBooking
    members: list[CheckInEntry]
    checked_in_members: int
    total_members: int


@dataclass(frozen=True)
class Invitee:
    email: str
    name: str | None = None


@dataclass(frozen=True)
class InvitationOutcome:
    sent: int
    skipped: int


@dataclass(frozen=True)
class ChatPage:
    messages: list[GroupChatMessage]
    total: int


@dataclass(frozen=True)
class UserGroupBooking:
    group: GroupBooking
    event: Event
    role: str
    total_booked: int


class GroupBookingService:
    """
    Shared invite-code booking pools. Every member booking is an
    ordinary booking made through BookingService, so group joins draw
    on the same capacity ledger as everyone else.
    """

    def __init__(
        self,
        db: Session,
        effects: PostCommitEffects | None = None,
        schedule: Schedule = run_now,
    ):
        self.db = db
        self.effects = effects
        self.schedule = schedule
        self.group_repository = GroupRepository(db)
        self.event_repository = EventRepository(db)
        self.ledger = CapacityLedger(db)
        self.audit = AuditRepository(db)
        self.booking_service = BookingService(db, effects=effects, schedule=schedule)

    def create_group_booking(
        self,
        event_id: str,
        organizer_email: str,
        organizer_name: str,
        group_name: str,
        estimated_size: int,
        max_size: int,
    ) -> GroupBooking:
        if estimated_size <= 0 or max_size <= 0:
            raise InvalidArgumentError("Group sizes must be positive")
        if estimated_size > max_size:
            raise InvalidArgumentError("Estimated size cannot exceed the maximum group size")

        def work() -> GroupBooking:
            event = self.event_repository.get_by_id(event_id)
            if event is None or event.status != EventStatus.PUBLISHED:
                raise NotFoundError("Event not found or not published")

            cutoff = timedelta(hours=GROUP_BOOKING_CUTOFF_HOURS)
            starts_at = as_utc(event.starts_at)
            if starts_at - datetime.now(timezone.utc) < cutoff:
                raise FailedPreconditionError(
                    f"Cannot create group bookings less than {GROUP_BOOKING_CUTOFF_HOURS} hours before the event"
                )

            benefits = calculate_group_benefits(estimated_size)
            invite_code = self.group_repository.unused_invite_code()
            group = self.group_repository.add(
                GroupBooking(
                    event_id=event_id,
                    organizer_email=organizer_email,
                    organizer_name=organizer_name,
                    group_name=group_name,
                    estimated_size=estimated_size,
                    max_size=max_size,
                    invite_code=invite_code,
                    status=GroupBookingStatus.ACTIVE,
                    discount_percentage=benefits.discount_percentage,
                    complimentary_tickets=benefits.complimentary_tickets,
                    expires_at=starts_at - cutoff,
                )
            )
            self._system_message(
                group,
                f"Group booking created! Share the invite code {invite_code} with your group.",
            )
            return group

        group = run_atomic(self.db, work, retry_on=(OperationalError, CodeCollisionError))
        logger.info(
            "Group booking created. invite_code=%s event_id=%s discount=%s complimentary=%s",
            group.invite_code,
            event_id,
            group.discount_percentage,
            group.complimentary_tickets,
        )
        return group

    def join_group_booking(
        self,
        invite_code: str,
        ticket_tier_id: str,
        quantity: int,
        customer_email: str,
        customer_name: str,
    ) -> JoinResult:
        if quantity <= 0:
            raise InvalidArgumentError("Quantity must be positive")

        def work() -> JoinResult:
            group = self._get_group(invite_code, for_update=True)
            if group.status != GroupBookingStatus.ACTIVE:
                raise FailedPreconditionError("Group booking is not accepting new members")
            if self._expired(group):
                raise FailedPreconditionError("Group booking has expired")

            if self.group_repository.find_member_by_email(group.id, customer_email) is not None:
                raise AlreadyExistsError("You have already joined this group booking")

            if self.group_repository.total_booked(group.id) + quantity > group.max_size:
                raise ResourceExhaustedError("Not enough slots remaining in the group")

            tier = self.ledger.get_tier(ticket_tier_id, event_id=group.event_id)
            if tier is None or not tier.is_active:
                raise NotFoundError("Ticket tier not found")

            base_amount = effective_price(tier, datetime.now(timezone.utc)) * quantity
            discount = group_discount(base_amount, group.discount_percentage)

            remaining_complimentary = (
                group.complimentary_tickets - self.group_repository.complimentary_used(group.id)
            )
            is_complimentary = remaining_complimentary >= quantity
            final_amount = 0 if is_complimentary else base_amount - discount

            booking = self.booking_service.reserve_booking(
                event_id=group.event_id,
                ticket_tier_id=ticket_tier_id,
                quantity=quantity,
                customer_email=customer_email,
                customer_name=customer_name,
                total_amount=final_amount,
                group_booking_id=group.id,
            )

            try:
                self.group_repository.add_member(
                    GroupMember(
                        group_booking_id=group.id,
                        booking_id=booking.id,
                        email=customer_email,
                        name=customer_name,
                        ticket_tier_id=ticket_tier_id,
                        quantity=quantity,
                        amount_paid=final_amount,
                        discount_applied=discount,
                        is_complimentary=is_complimentary,
                    )
                )
            except IntegrityError as exc:
                raise AlreadyExistsError("You have already joined this group booking") from exc

            if is_complimentary:
                message = f"{customer_name} joined with {quantity} complimentary tickets!"
            else:
                message = (
                    f"{customer_name} joined with {quantity} tickets "
                    f"({group.discount_percentage}% group discount applied)!"
                )
            self.group_repository.add_message(group.id, customer_email, customer_name, message)

            return JoinResult(
                booking=booking,
                group_booking_id=group.id,
                discount_applied=discount,
                final_amount=final_amount,
                is_complimentary=is_complimentary,
            )

        result = run_atomic(self.db, work, retry_on=(OperationalError, CodeCollisionError))
        logger.info(
            "Group member joined. invite_code=%s booking_code=%s complimentary=%s",
            invite_code,
            result.booking.booking_code,
            result.is_complimentary,
        )
        self.booking_service.announce(result.booking)
        return result

    def lock_group_booking(self, invite_code: str, organizer_email: str) -> GroupBooking:
        def work() -> GroupBooking:
            group = self._get_organized_group(invite_code, organizer_email)
            if group.status != GroupBookingStatus.ACTIVE:
                raise FailedPreconditionError("Group booking cannot be locked")

            group = self.group_repository.transition(
                group,
                GroupBookingStatus.LOCKED,
                locked_at=datetime.now(timezone.utc),
            )
            self._system_message(group, "Group booking has been locked. No more changes allowed.")
            self.audit.log_action(
                action="group_booking.lock",
                resource_type="group_booking",
                resource_id=group.id,
                old_values={"status": GroupBookingStatus.ACTIVE.value},
                new_values={"status": group.status.value},
                user_id=organizer_email,
            )
            return group

        group = run_atomic(self.db, work)
        logger.info("Group booking locked. invite_code=%s", invite_code)
        return group

    def assign_seating(
        self,
        invite_code: str,
        organizer_email: str,
        assignments: list[SeatRequest],
    ) -> int:
        def work() -> int:
            group = self._get_organized_group(invite_code, organizer_email)
            if group.status not in SEATING_STATUSES:
                raise FailedPreconditionError("Seating can no longer be changed for this group")

            applied = 0
            for seat in assignments:
                # Bookings outside the group are skipped.
                if not self.group_repository.is_member_booking(group.id, seat.booking_id):
                    continue
                self.group_repository.replace_seat(
                    group.id,
                    seat.booking_id,
                    section=seat.section,
                    row_number=seat.row_number,
                    seat_number=seat.seat_number,
                )
                applied += 1

            self._system_message(group, f"Seating assignments updated for {applied} members.")
            return applied

        applied = run_atomic(self.db, work)
        logger.info("Seating updated. invite_code=%s applied=%s", invite_code, applied)
        return applied

    def update_group_size(
        self,
        invite_code: str,
        organizer_email: str,
        new_max_size: int,
    ) -> GroupBooking:
        """Resize an active group and recompute its size benefits."""
        if new_max_size <= 0:
            raise InvalidArgumentError("Group sizes must be positive")

        def work() -> GroupBooking:
            group = self._get_organized_group(invite_code, organizer_email)
            if group.status != GroupBookingStatus.ACTIVE:
                raise FailedPreconditionError("Group size can only be changed while the group is active")

            event = self.event_repository.get_by_id(group.event_id)
            cutoff = timedelta(hours=GROUP_BOOKING_CUTOFF_HOURS)
            if as_utc(event.starts_at) - datetime.now(timezone.utc) < cutoff:
                raise FailedPreconditionError(
                    f"Cannot change group size within {GROUP_BOOKING_CUTOFF_HOURS} hours of the event"
                )

            if new_max_size < self.group_repository.total_booked(group.id):
                raise InvalidArgumentError("New size cannot be smaller than current bookings")

            previous = {
                "max_size": group.max_size,
                "discount_percentage": group.discount_percentage,
                "complimentary_tickets": group.complimentary_tickets,
            }
            benefits = calculate_group_benefits(new_max_size)
            group = self.group_repository.resize(
                group,
                max_size=new_max_size,
                estimated_size=min(group.estimated_size, new_max_size),
                discount_percentage=benefits.discount_percentage,
                complimentary_tickets=benefits.complimentary_tickets,
            )
            self.group_repository.add_message(
                group.id,
                organizer_email,
                group.organizer_name,
                f"Group size updated to {new_max_size}. New discount: {benefits.discount_percentage}%",
            )
            self.audit.log_action(
                action="group_booking.resize",
                resource_type="group_booking",
                resource_id=group.id,
                old_values=previous,
                new_values={
                    "max_size": group.max_size,
                    "discount_percentage": group.discount_percentage,
                    "complimentary_tickets": group.complimentary_tickets,
                },
                user_id=organizer_email,
            )
            return group

        group = run_atomic(self.db, work)
        logger.info(
            "Group booking resized. invite_code=%s max_size=%s discount=%s",
            invite_code,
            group.max_size,
            group.discount_percentage,
        )
        return group

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def send_message(
        self,
        invite_code: str,
        sender_email: str,
        sender_name: str,
        message: str,
    ) -> GroupChatMessage:
        if not message.strip():
            raise InvalidArgumentError("Message cannot be empty")

        def work() -> GroupChatMessage:
            group = self.group_repository.get_by_invite_code(invite_code)
            if group is None or group.status != GroupBookingStatus.ACTIVE:
                raise NotFoundError("Group booking not found or not active")

            invitation = self.group_repository.find_invitation(group.id, sender_email)
            accepted = invitation is not None and invitation.status == InvitationStatus.ACCEPTED
            if not (self._is_participant(group, sender_email) or accepted):
                raise PermissionDeniedError(
                    "Only group organizer, members, or invited users can send messages"
                )

            chat_message = self.group_repository.add_message(
                group.id,
                sender_email,
                sender_name,
                message,
                message_type="text",
            )
            self.db.flush()
            return chat_message

        return run_atomic(self.db, work)

    def get_chat_messages(
        self,
        invite_code: str,
        user_email: str,
        limit: int = CHAT_PAGE_SIZE,
        offset: int = 0,
    ) -> ChatPage:
        group = self._get_group(invite_code)
        invited = self.group_repository.find_invitation(group.id, user_email) is not None
        if not (self._is_participant(group, user_email) or invited):
            raise PermissionDeniedError("You don't have access to this group chat")

        limit = max(1, min(limit, MAX_CHAT_PAGE_SIZE))
        offset = max(0, offset)
        return ChatPage(
            messages=self.group_repository.message_page(group.id, limit=limit, offset=offset),
            total=self.group_repository.count_messages(group.id),
        )

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    def send_invitations(
        self,
        invite_code: str,
        inviter_email: str,
        inviter_name: str,
        invitees: list[Invitee],
    ) -> InvitationOutcome:
        """
        Invite people by email. Addresses that already hold an
        invitation or a membership are skipped, as are repeats
        within the same request.
        """

        def work() -> tuple[GroupBooking, list[GroupInvitation], int]:
            group = self.group_repository.get_by_invite_code(invite_code, for_update=True)
            if group is None or group.status != GroupBookingStatus.ACTIVE:
                raise NotFoundError("Group booking not found or not active")
            if not self._is_participant(group, inviter_email):
                raise PermissionDeniedError("Only group organizer or members can send invitations")

            created: list[GroupInvitation] = []
            skipped = 0
            seen: set[str] = set()
            for invitee in invitees:
                already = (
                    invitee.email in seen
                    or self.group_repository.find_invitation(group.id, invitee.email) is not None
                    or self.group_repository.find_member_by_email(group.id, invitee.email) is not None
                )
                seen.add(invitee.email)
                if already:
                    skipped += 1
                    continue
                created.append(
                    self.group_repository.add_invitation(
                        group.id,
                        email=invitee.email,
                        name=invitee.name,
                        invited_by=inviter_email,
                    )
                )

            self.group_repository.add_message(
                group.id,
                inviter_email,
                inviter_name,
                f"Invited {len(created)} new people to join the group!",
            )
            return group, created, skipped

        group, created, skipped = run_atomic(self.db, work)
        logger.info(
            "Group invitations sent. invite_code=%s sent=%s skipped=%s",
            invite_code,
            len(created),
            skipped,
        )

        if self.effects is not None:
            for invitation in created:
                self.schedule(
                    self.effects.group_invitation,
                    invitation.email,
                    invitation.name or invitation.email,
                    inviter_name,
                    group.group_name,
                    group.invite_code,
                )
        return InvitationOutcome(sent=len(created), skipped=skipped)

    def respond_to_invitation(self, invite_code: str, email: str, accept: bool) -> GroupInvitation:
        def work() -> GroupInvitation:
            group = self.group_repository.get_by_invite_code(invite_code)
            invitation = None
            if group is not None:
                invitation = self.group_repository.find_invitation(group.id, email)
            if invitation is None or invitation.status != InvitationStatus.PENDING:
                raise NotFoundError("Invitation not found or already responded")

            new_status = InvitationStatus.ACCEPTED if accept else InvitationStatus.DECLINED
            invitation = self.group_repository.respond_to_invitation(invitation, new_status)
            if accept:
                message = f"{email} accepted the invitation!"
            else:
                message = f"{email} declined the invitation."
            self._system_message(group, message)
            return invitation

        invitation = run_atomic(self.db, work)
        logger.info(
            "Invitation answered. invite_code=%s status=%s",
            invite_code,
            invitation.status.value,
        )
        return invitation

    def list_user_group_bookings(self, email: str) -> list[UserGroupBooking]:
        """Groups the address organizes, has joined, or is still invited to."""
        listing: list[UserGroupBooking] = []
        for role, rows in (
            ("organizer", self.group_repository.organized_by(email)),
            ("member", self.group_repository.joined_by(email)),
            ("invited", self.group_repository.invited(email)),
        ):
            for group, event in rows:
                listing.append(
                    UserGroupBooking(
                        group=group,
                        event=event,
                        role=role,
                        total_booked=self.group_repository.total_booked(group.id),
                    )
                )
        return listing

    def get_group_check_in(self, invite_code: str) -> GroupCheckIn:
        group = self._get_group(invite_code)
        entries = [
            CheckInEntry(
                name=member.name,
                email=member.email,
                quantity=member.quantity,
                booking_code=booking.booking_code,
                checked_in=booking.status == BookingStatus.CHECKED_IN,
            )
            for member, booking in self.group_repository.members_with_bookings(group.id)
        ]
        return GroupCheckIn(
            group=group,
            members=entries,
            checked_in_members=sum(1 for entry in entries if entry.checked_in),
            total_members=len(entries),
        )

    def get_group_booking(self, invite_code: str) -> GroupBookingView:
        group = self._get_group(invite_code)

        if group.status == GroupBookingStatus.ACTIVE and self._expired(group):
            group = run_atomic(self.db, lambda: self._expire(group))

        event = self.event_repository.get_by_id(group.event_id)
        members = [
            MemberView(member=member, ticket_tier_name=tier.name)
            for member, tier in self.group_repository.members_with_tiers(group.id)
        ]
        total_booked = sum(view.member.quantity for view in members)
        total_paid = sum(view.member.amount_paid for view in members)
        remaining_slots = group.max_size - total_booked

        return GroupBookingView(
            group=group,
            event=event,
            members=members,
            seating=self.group_repository.seating(group.id),
            messages=self.group_repository.messages(group.id),
            total_booked=total_booked,
            total_paid=total_paid,
            remaining_slots=remaining_slots,
            can_still_join=group.status == GroupBookingStatus.ACTIVE and remaining_slots > 0,
        )

    def _expire(self, group: GroupBooking) -> GroupBooking:
        group = self.group_repository.transition(group, GroupBookingStatus.CANCELLED)
        self._system_message(group, "Group booking expired and has been cancelled.")
        logger.info("Group booking expired. invite_code=%s", group.invite_code)
        return group

    def _expired(self, group: GroupBooking) -> bool:
        expires_at = as_utc(group.expires_at)
        return expires_at is not None and datetime.now(timezone.utc) > expires_at

    def _get_group(self, invite_code: str, for_update: bool = False) -> GroupBooking:
        group = self.group_repository.get_by_invite_code(invite_code, for_update=for_update)
        if group is None:
            raise NotFoundError("Group booking not found")
        return group

    def _get_organized_group(self, invite_code: str, organizer_email: str) -> GroupBooking:
        group = self.group_repository.get_by_invite_code(invite_code, for_update=True)
        if group is None or group.organizer_email != organizer_email:
            raise NotFoundError("Group booking not found or you are not the organizer")
        return group

    def _system_message(self, group: GroupBooking, message: str) -> GroupChatMessage:
        return self.group_repository.add_message(
            group.id,
            SYSTEM_SENDER_EMAIL,
            SYSTEM_SENDER_NAME,
            message,
            message_type="system",
        )

    def _is_participant(self, group: GroupBooking, email: str) -> bool:
        if group.organizer_email == email:
            return True
        return self.group_repository.find_member_by_email(group.id, email) is not None
