from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketing.api.dependencies import get_db
from ticketing.api.schemas.schemas import (
    EventCreateRequest,
    EventDetailsResponse,
    EventResponse,
    TierCreateRequest,
    TierResponse,
)
from ticketing.application.event_service import EventService
from ticketing.infrastructure.db.models import TicketTier

router = APIRouter(tags=["events"])


def _tier_response(tier: TicketTier) -> TierResponse:
    return TierResponse(
        id=tier.id,
        event_id=tier.event_id,
        name=tier.name,
        price=tier.price,
        early_bird_price=tier.early_bird_price,
        early_bird_end=tier.early_bird_end,
        max_quantity=tier.max_quantity,
        sold_quantity=tier.sold_quantity,
        available_quantity=tier.max_quantity - tier.sold_quantity,
        is_active=tier.is_active,
    )


@router.get("/health")
def health():
    return {"message": "Ticketing engine is running"}


@router.post("/events", response_model=EventResponse)
def create_event(request: EventCreateRequest, db: Session = Depends(get_db)):
    event = EventService(db).create_event(
        name=request.name,
        venue=request.venue,
        starts_at=request.starts_at,
        capacity=request.capacity,
        registration_start=request.registration_start,
        registration_end=request.registration_end,
    )
    return EventResponse.model_validate(event)


@router.post("/events/{event_id}/tiers", response_model=TierResponse)
def add_tier(event_id: str, request: TierCreateRequest, db: Session = Depends(get_db)):
    tier = EventService(db).add_tier(
        event_id=event_id,
        name=request.name,
        price=request.price,
        max_quantity=request.max_quantity,
        early_bird_price=request.early_bird_price,
        early_bird_end=request.early_bird_end,
    )
    return _tier_response(tier)


@router.post("/events/{event_id}/publish", response_model=EventResponse)
def publish_event(event_id: str, db: Session = Depends(get_db)):
    return EventResponse.model_validate(EventService(db).publish_event(event_id))


@router.post("/events/{event_id}/cancel", response_model=EventResponse)
def cancel_event(event_id: str, db: Session = Depends(get_db)):
    return EventResponse.model_validate(EventService(db).cancel_event(event_id))


@router.get("/events/{event_id}", response_model=EventDetailsResponse)
def get_event(event_id: str, db: Session = Depends(get_db)):
    overview = EventService(db).get_event(event_id)
    return EventDetailsResponse(
        **EventResponse.model_validate(overview.event).model_dump(),
        tiers=[_tier_response(tier) for tier in overview.tiers],
    )
