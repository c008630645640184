from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ticketing.api.dependencies import get_db, get_effects
from ticketing.api.schemas.schemas import (
    ChatMessageRequest,
    ChatMessageResponse,
    ChatMessagesResponse,
    GroupBookingCreateRequest,
    GroupBookingDetailsResponse,
    GroupBookingResponse,
    GroupCheckInMemberResponse,
    GroupCheckInResponse,
    GroupJoinRequest,
    GroupJoinResponse,
    GroupLockRequest,
    GroupMemberResponse,
    GroupSizeRequest,
    GroupSizeResponse,
    InvitationReplyRequest,
    InvitationReplyResponse,
    InvitationsRequest,
    InvitationsResponse,
    SeatingAssignmentResponse,
    SeatingRequest,
    SeatingResponse,
    UserGroupBookingResponse,
    UserGroupBookingsResponse,
)
from ticketing.application.effects import PostCommitEffects
from ticketing.application.group_service import (
    CHAT_PAGE_SIZE,
    GroupBookingService,
    Invitee,
    SeatRequest,
)

router = APIRouter(prefix="/group-bookings", tags=["group-bookings"])
users_router = APIRouter(prefix="/users", tags=["group-bookings"])


@router.post("", response_model=GroupBookingResponse)
def create_group_booking(request: GroupBookingCreateRequest, db: Session = Depends(get_db)):
    group = GroupBookingService(db).create_group_booking(
        event_id=request.event_id,
        organizer_email=request.organizer_email,
        organizer_name=request.organizer_name,
        group_name=request.group_name,
        estimated_size=request.estimated_size,
        max_size=request.max_size,
    )
    return GroupBookingResponse.model_validate(group)


@router.post("/join", response_model=GroupJoinResponse)
def join_group_booking(
    request: GroupJoinRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    effects: PostCommitEffects = Depends(get_effects),
):
    service = GroupBookingService(db, effects=effects, schedule=background_tasks.add_task)
    result = service.join_group_booking(
        invite_code=request.invite_code,
        ticket_tier_id=request.ticket_tier_id,
        quantity=request.quantity,
        customer_email=request.customer_email,
        customer_name=request.customer_name,
    )
    return GroupJoinResponse(
        booking_code=result.booking.booking_code,
        group_booking_id=result.group_booking_id,
        discount_applied=result.discount_applied,
        final_amount=result.final_amount,
        is_complimentary=result.is_complimentary,
    )


@router.post("/lock", response_model=GroupBookingResponse)
def lock_group_booking(request: GroupLockRequest, db: Session = Depends(get_db)):
    group = GroupBookingService(db).lock_group_booking(
        invite_code=request.invite_code,
        organizer_email=request.organizer_email,
    )
    return GroupBookingResponse.model_validate(group)


@router.post("/seating", response_model=SeatingResponse)
def assign_seating(request: SeatingRequest, db: Session = Depends(get_db)):
    assigned = GroupBookingService(db).assign_seating(
        invite_code=request.invite_code,
        organizer_email=request.organizer_email,
        assignments=[
            SeatRequest(
                booking_id=seat.booking_id,
                section=seat.section,
                row_number=seat.row_number,
                seat_number=seat.seat_number,
            )
            for seat in request.assignments
        ],
    )
    return SeatingResponse(success=True, assigned=assigned)


@router.put("/size", response_model=GroupSizeResponse)
def update_group_size(request: GroupSizeRequest, db: Session = Depends(get_db)):
    group = GroupBookingService(db).update_group_size(
        invite_code=request.invite_code,
        organizer_email=request.organizer_email,
        new_max_size=request.new_max_size,
    )
    return GroupSizeResponse(
        success=True,
        max_size=group.max_size,
        discount_percentage=group.discount_percentage,
        complimentary_tickets=group.complimentary_tickets,
    )


@router.post("/chat", response_model=ChatMessageResponse)
def send_message(request: ChatMessageRequest, db: Session = Depends(get_db)):
    message = GroupBookingService(db).send_message(
        invite_code=request.invite_code,
        sender_email=request.sender_email,
        sender_name=request.sender_name,
        message=request.message,
    )
    return ChatMessageResponse.model_validate(message)


@router.get("/chat/{invite_code}", response_model=ChatMessagesResponse)
def get_chat_messages(
    invite_code: str,
    user_email: str,
    limit: int = Query(CHAT_PAGE_SIZE),
    offset: int = Query(0),
    db: Session = Depends(get_db),
):
    page = GroupBookingService(db).get_chat_messages(
        invite_code=invite_code,
        user_email=user_email,
        limit=limit,
        offset=offset,
    )
    return ChatMessagesResponse(
        messages=[ChatMessageResponse.model_validate(message) for message in page.messages],
        total=page.total,
    )


@router.post("/invite", response_model=InvitationsResponse)
def send_invitations(
    request: InvitationsRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    effects: PostCommitEffects = Depends(get_effects),
):
    service = GroupBookingService(db, effects=effects, schedule=background_tasks.add_task)
    outcome = service.send_invitations(
        invite_code=request.invite_code,
        inviter_email=request.inviter_email,
        inviter_name=request.inviter_name,
        invitees=[Invitee(email=item.email, name=item.name) for item in request.invitations],
    )
    return InvitationsResponse(sent=outcome.sent, skipped=outcome.skipped)


@router.post("/respond", response_model=InvitationReplyResponse)
def respond_to_invitation(request: InvitationReplyRequest, db: Session = Depends(get_db)):
    invitation = GroupBookingService(db).respond_to_invitation(
        invite_code=request.invite_code,
        email=request.email,
        accept=request.response == "accept",
    )
    return InvitationReplyResponse(success=True, status=invitation.status)


@users_router.get("/group-bookings", response_model=UserGroupBookingsResponse)
def list_user_group_bookings(email: str, db: Session = Depends(get_db)):
    listing = GroupBookingService(db).list_user_group_bookings(email)
    return UserGroupBookingsResponse(
        group_bookings=[
            UserGroupBookingResponse(
                id=entry.group.id,
                group_name=entry.group.group_name,
                event_name=entry.event.name,
                event_date=entry.event.starts_at,
                venue=entry.event.venue,
                invite_code=entry.group.invite_code,
                status=entry.group.status,
                role=entry.role,
                total_booked=entry.total_booked,
                max_size=entry.group.max_size,
            )
            for entry in listing
        ]
    )


@router.get("/checkin/{invite_code}", response_model=GroupCheckInResponse)
def get_group_check_in(invite_code: str, db: Session = Depends(get_db)):
    roster = GroupBookingService(db).get_group_check_in(invite_code)
    return GroupCheckInResponse(
        group_name=roster.group.group_name,
        event_id=roster.group.event_id,
        members=[
            GroupCheckInMemberResponse(
                name=entry.name,
                email=entry.email,
                quantity=entry.quantity,
                booking_code=entry.booking_code,
                checked_in=entry.checked_in,
            )
            for entry in roster.members
        ],
        checked_in_members=roster.checked_in_members,
        total_members=roster.total_members,
    )


@router.get("/{invite_code}", response_model=GroupBookingDetailsResponse)
def get_group_booking(invite_code: str, db: Session = Depends(get_db)):
    view = GroupBookingService(db).get_group_booking(invite_code)
    return GroupBookingDetailsResponse(
        **GroupBookingResponse.model_validate(view.group).model_dump(),
        event_name=view.event.name,
        event_date=view.event.starts_at,
        venue=view.event.venue,
        members=[
            GroupMemberResponse(
                id=entry.member.id,
                booking_id=entry.member.booking_id,
                email=entry.member.email,
                name=entry.member.name,
                ticket_tier_id=entry.member.ticket_tier_id,
                ticket_tier_name=entry.ticket_tier_name,
                quantity=entry.member.quantity,
                amount_paid=entry.member.amount_paid,
                discount_applied=entry.member.discount_applied,
                is_complimentary=entry.member.is_complimentary,
                joined_at=entry.member.joined_at,
            )
            for entry in view.members
        ],
        seating=[SeatingAssignmentResponse.model_validate(seat) for seat in view.seating],
        chat_messages=[ChatMessageResponse.model_validate(msg) for msg in view.messages],
        total_booked=view.total_booked,
        total_paid=view.total_paid,
        remaining_slots=view.remaining_slots,
        can_still_join=view.can_still_join,
    )
