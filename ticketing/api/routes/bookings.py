from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from ticketing.api.dependencies import get_db, get_effects
from ticketing.api.schemas.schemas import (
    BookingDetailsResponse,
    BookingRequest,
    BookingResponse,
    CheckInRequest,
)
from ticketing.application.booking_service import BookingService
from ticketing.application.effects import PostCommitEffects

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingResponse)
def create_booking(
    request: BookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    effects: PostCommitEffects = Depends(get_effects),
):
    service = BookingService(db, effects=effects, schedule=background_tasks.add_task)
    booking = service.book(
        event_id=request.event_id,
        ticket_tier_id=request.ticket_tier_id,
        quantity=request.quantity,
        customer_email=request.customer_email,
        customer_name=request.customer_name,
    )
    return BookingResponse.model_validate(booking)


@router.post("/checkin", response_model=BookingResponse)
def check_in_booking(request: CheckInRequest, db: Session = Depends(get_db)):
    booking = BookingService(db).check_in(request.booking_code)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_code}", response_model=BookingDetailsResponse)
def get_booking(booking_code: str, db: Session = Depends(get_db)):
    details = BookingService(db).get_details(booking_code)
    return BookingDetailsResponse(
        **BookingResponse.model_validate(details.booking).model_dump(),
        event_name=details.event.name,
        event_date=details.event.starts_at,
        venue=details.event.venue,
        tier_name=details.tier.name,
    )


@router.post("/{booking_code}/cancel", response_model=BookingResponse)
def cancel_booking(booking_code: str, db: Session = Depends(get_db)):
    booking = BookingService(db).cancel(booking_code)
    return BookingResponse.model_validate(booking)
