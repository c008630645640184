# ticketing/infrastructure/db/models.py

from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from uuid import uuid4

from ticketing.infrastructure.db.session import Base
from ticketing.domain.state_machine import (
    BookingStatus,
    EventStatus,
    GroupBookingStatus,
    InvitationStatus,
    PaymentStatus,
    TicketStatus,
)


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _status_enum(enum_cls: type[PyEnum], name: str) -> Enum:
    # Persist the lower-case values, not the member names.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class Event(Base):
    """
    Owned by event administration. The booking core only
    reads capacity, status and the registration window.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    venue: Mapped[str] = mapped_column(String(128), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        _status_enum(EventStatus, "event_status"),
        nullable=False,
        default=EventStatus.DRAFT,
    )
    registration_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    registration_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_event_capacity_nonnegative"),
    )


class TicketTier(Base):
    """
    Per-tier capacity counters. Only the capacity ledger
    writes sold_quantity.
    """

    __tablename__ = "ticket_tiers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    early_bird_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    early_bird_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    sold_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_tier_event_name"),
        CheckConstraint("price >= 0", name="ck_tier_price_nonnegative"),
        CheckConstraint("max_quantity >= 0", name="ck_tier_max_quantity_nonnegative"),
        CheckConstraint("sold_quantity >= 0", name="ck_tier_sold_nonnegative"),
        CheckConstraint("sold_quantity <= max_quantity", name="ck_tier_sold_lte_max"),
    )


class Booking(Base):
    """
    Quick single-tier booking. Created together with
    its capacity reservation.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    ticket_tier_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_tiers.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(128), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _status_enum(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    group_booking_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("group_bookings.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("booking_code", name="uq_booking_code"),
        CheckConstraint("quantity > 0", name="ck_booking_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_nonnegative"),
    )


class TicketOrder(Base):
    __tablename__ = "ticket_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _status_enum(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        UniqueConstraint("payment_reference", name="uq_order_payment_reference"),
        CheckConstraint("total_amount >= 0", name="ck_order_total_nonnegative"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_orders.id"), nullable=False)
    tier_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_tiers.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    tier_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_tiers.id"), nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_orders.id"), nullable=False)
    order_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("order_items.id"), nullable=False)
    unit_index: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ticket_number: Mapped[str] = mapped_column(String(64), nullable=False)
    qr_code: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        _status_enum(TicketStatus, "ticket_status"),
        nullable=False,
        default=TicketStatus.ACTIVE,
    )
    purchase_price: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("ticket_number", name="uq_ticket_number"),
        UniqueConstraint("qr_code", name="uq_ticket_qr_code"),
        UniqueConstraint("order_item_id", "unit_index", name="uq_ticket_order_item_unit"),
        Index("ix_tickets_user_created", "user_id", "created_at"),
    )


class GroupBooking(Base):
    __tablename__ = "group_bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    organizer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    organizer_name: Mapped[str] = mapped_column(String(128), nullable=False)
    group_name: Mapped[str] = mapped_column(String(128), nullable=False)
    estimated_size: Mapped[int] = mapped_column(Integer, nullable=False)
    max_size: Mapped[int] = mapped_column(Integer, nullable=False)
    invite_code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[GroupBookingStatus] = mapped_column(
        _status_enum(GroupBookingStatus, "group_booking_status"),
        nullable=False,
        default=GroupBookingStatus.ACTIVE,
    )
    discount_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    complimentary_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("invite_code", name="uq_group_invite_code"),
        CheckConstraint("max_size > 0", name="ck_group_max_size_positive"),
    )


class GroupMember(Base):
    __tablename__ = "group_booking_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("group_bookings.id"),
        nullable=False,
    )
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    ticket_tier_id: Mapped[str] = mapped_column(String(36), ForeignKey("ticket_tiers.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_complimentary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_group_member_booking"),
        UniqueConstraint("group_booking_id", "email", name="uq_group_member_email"),
    )


class SeatingAssignment(Base):
    __tablename__ = "group_seating_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("group_bookings.id"),
        nullable=False,
    )
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"), nullable=False)
    section: Mapped[str | None] = mapped_column(String(32), nullable=True)
    row_number: Mapped[str | None] = mapped_column(String(16), nullable=True)
    seat_number: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("group_booking_id", "booking_id", name="uq_group_seat_booking"),
    )


class GroupChatMessage(Base):
    __tablename__ = "group_chat_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("group_bookings.id"),
        nullable=False,
    )
    sender_email: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(128), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="text")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        nullable=False,
    )


class GroupInvitation(Base):
    __tablename__ = "group_invitations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    group_booking_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("group_bookings.id"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    invited_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        _status_enum(InvitationStatus, "invitation_status"),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("group_booking_id", "email", name="uq_group_invitation_email"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    old_values: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    new_values: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
