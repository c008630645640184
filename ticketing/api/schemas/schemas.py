from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ticketing.domain.state_machine import (
    BookingStatus,
    EventStatus,
    GroupBookingStatus,
    InvitationStatus,
    PaymentStatus,
    TicketStatus,
)


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Bookings
# -----------------------------
class BookingRequest(BaseModel):
    event_id: str
    ticket_tier_id: str
    quantity: int = Field(gt=0)
    customer_email: str
    customer_name: str


class CheckInRequest(BaseModel):
    booking_code: str


class BookingResponse(OrmModel):
    id: str
    event_id: str
    ticket_tier_id: str
    quantity: int
    customer_email: str
    customer_name: str
    total_amount: int
    booking_code: str
    status: BookingStatus
    group_booking_id: str | None = None
    created_at: datetime


class BookingDetailsResponse(BookingResponse):
    event_name: str
    event_date: datetime
    venue: str
    tier_name: str


# -----------------------------
# Orders and tickets
# -----------------------------
class OrderItemRequest(BaseModel):
    tier_id: str
    quantity: int


class OrderCreateRequest(BaseModel):
    user_id: str
    event_id: str
    items: list[OrderItemRequest]


class OrderResponse(OrmModel):
    id: str
    user_id: str
    event_id: str
    order_number: str
    total_amount: int
    payment_status: PaymentStatus
    payment_reference: str | None = None
    gateway_order_id: str | None = None
    created_at: datetime


class OrderItemResponse(OrmModel):
    id: str
    tier_id: str
    quantity: int
    unit_price: int
    total_price: int


class PlacedOrderResponse(BaseModel):
    order: OrderResponse
    items: list[OrderItemResponse]


class CompleteOrderRequest(BaseModel):
    order_id: str
    payment_reference: str


class TicketResponse(OrmModel):
    id: str
    event_id: str
    tier_id: str
    order_id: str
    user_id: str
    ticket_number: str
    qr_code: str
    status: TicketStatus
    purchase_price: int
    purchase_date: datetime
    used_at: datetime | None = None


class TicketsResponse(BaseModel):
    tickets: list[TicketResponse]


class TicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    total: int


class TicketValidationResponse(BaseModel):
    ticket: TicketResponse
    is_valid: bool
    message: str


class CheckoutSessionResponse(BaseModel):
    order_id: str
    gateway_order_id: str
    amount: int
    currency: str
    key_id: str


class PaymentConfirmRequest(BaseModel):
    gateway_order_id: str
    payment_id: str
    signature: str


class PaymentConfirmResponse(BaseModel):
    success: bool
    order_number: str
    tickets: list[TicketResponse]


# -----------------------------
# Group bookings
# -----------------------------
class GroupBookingCreateRequest(BaseModel):
    event_id: str
    organizer_email: str
    organizer_name: str
    group_name: str
    estimated_size: int
    max_size: int


class GroupBookingResponse(OrmModel):
    id: str
    event_id: str
    organizer_email: str
    organizer_name: str
    group_name: str
    estimated_size: int
    max_size: int
    invite_code: str
    status: GroupBookingStatus
    discount_percentage: int
    complimentary_tickets: int
    created_at: datetime
    locked_at: datetime | None = None
    expires_at: datetime | None = None


class GroupJoinRequest(BaseModel):
    invite_code: str
    ticket_tier_id: str
    quantity: int = Field(gt=0)
    customer_email: str
    customer_name: str


class GroupJoinResponse(BaseModel):
    booking_code: str
    group_booking_id: str
    discount_applied: int
    final_amount: int
    is_complimentary: bool


class GroupLockRequest(BaseModel):
    invite_code: str
    organizer_email: str


class SeatAssignmentRequest(BaseModel):
    booking_id: str
    section: str | None = None
    row_number: str | None = None
    seat_number: str | None = None


class SeatingRequest(BaseModel):
    invite_code: str
    organizer_email: str
    assignments: list[SeatAssignmentRequest]


class SeatingResponse(BaseModel):
    success: bool
    assigned: int


class GroupMemberResponse(BaseModel):
    id: str
    booking_id: str
    email: str
    name: str
    ticket_tier_id: str
    ticket_tier_name: str
    quantity: int
    amount_paid: int
    discount_applied: int
    is_complimentary: bool
    joined_at: datetime


class SeatingAssignmentResponse(OrmModel):
    booking_id: str
    section: str | None = None
    row_number: str | None = None
    seat_number: str | None = None


class ChatMessageResponse(OrmModel):
    id: str
    sender_email: str
    sender_name: str
    message: str
    message_type: str
    created_at: datetime


class GroupBookingDetailsResponse(GroupBookingResponse):
    event_name: str
    event_date: datetime
    venue: str
    members: list[GroupMemberResponse]
    seating: list[SeatingAssignmentResponse]
    chat_messages: list[ChatMessageResponse]
    total_booked: int
    total_paid: int
    remaining_slots: int
    can_still_join: bool


class GroupCheckInMemberResponse(BaseModel):
    name: str
    email: str
    quantity: int
    booking_code: str
    checked_in: bool


class GroupCheckInResponse(BaseModel):
    group_name: str
    event_id: str
    members: list[GroupCheckInMemberResponse]
    checked_in_members: int
    total_members: int


class GroupSizeRequest(BaseModel):
    invite_code: str
    organizer_email: str
    new_max_size: int = Field(gt=0)


class GroupSizeResponse(BaseModel):
    success: bool
    max_size: int
    discount_percentage: int
    complimentary_tickets: int


class ChatMessageRequest(BaseModel):
    invite_code: str
    sender_email: str
    sender_name: str
    message: str


class ChatMessagesResponse(BaseModel):
    messages: list[ChatMessageResponse]
    total: int


class InviteeRequest(BaseModel):
    email: str
    name: str | None = None


class InvitationsRequest(BaseModel):
    invite_code: str
    inviter_email: str
    inviter_name: str
    invitations: list[InviteeRequest]


class InvitationsResponse(BaseModel):
    sent: int
    skipped: int


class InvitationReplyRequest(BaseModel):
    invite_code: str
    email: str
    response: Literal["accept", "decline"]


class InvitationReplyResponse(BaseModel):
    success: bool
    status: InvitationStatus


class UserGroupBookingResponse(BaseModel):
    id: str
    group_name: str
    event_name: str
    event_date: datetime
    venue: str
    invite_code: str
    status: GroupBookingStatus
    role: Literal["organizer", "member", "invited"]
    total_booked: int
    max_size: int


class UserGroupBookingsResponse(BaseModel):
    group_bookings: list[UserGroupBookingResponse]


# -----------------------------
# Event administration
# -----------------------------
class EventCreateRequest(BaseModel):
    name: str
    venue: str
    starts_at: datetime
    capacity: int = Field(ge=0)
    registration_start: datetime | None = None
    registration_end: datetime | None = None


class TierCreateRequest(BaseModel):
    name: str
    price: int = Field(ge=0)
    max_quantity: int = Field(ge=0)
    early_bird_price: int | None = Field(default=None, ge=0)
    early_bird_end: datetime | None = None


class EventResponse(OrmModel):
    id: str
    name: str
    venue: str
    starts_at: datetime
    capacity: int
    status: EventStatus
    registration_start: datetime | None = None
    registration_end: datetime | None = None
    published_at: datetime | None = None
    created_at: datetime


class TierResponse(BaseModel):
    id: str
    event_id: str
    name: str
    price: int
    early_bird_price: int | None = None
    early_bird_end: datetime | None = None
    max_quantity: int
    sold_quantity: int
    available_quantity: int
    is_active: bool


class EventDetailsResponse(EventResponse):
    tiers: list[TierResponse]
