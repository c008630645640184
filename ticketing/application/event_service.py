import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketing.application.transaction import run_atomic
from ticketing.domain.exceptions import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
)
from ticketing.domain.pricing import as_utc
from ticketing.domain.state_machine import EventStateMachine, EventStatus
from ticketing.infrastructure.db.models import Event, TicketTier
from ticketing.infrastructure.repositories.audit_repository import AuditRepository
from ticketing.infrastructure.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventOverview:
    event: Event
    tiers: list[TicketTier]


class EventService:
    """Event and tier administration. Every change is audited."""

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.audit = AuditRepository(db)

    def create_event(
        self,
        name: str,
        venue: str,
        starts_at: datetime,
        capacity: int,
        registration_start: datetime | None = None,
        registration_end: datetime | None = None,
        user_id: str | None = None,
    ) -> Event:
        if capacity < 0:
            raise InvalidArgumentError("Capacity must not be negative")
        if (
            registration_start is not None
            and registration_end is not None
            and as_utc(registration_end) < as_utc(registration_start)
        ):
            raise InvalidArgumentError("Registration must end after it starts")

        def work() -> Event:
            event = self.event_repository.add(
                Event(
                    name=name,
                    venue=venue,
                    starts_at=starts_at,
                    capacity=capacity,
                    status=EventStatus.DRAFT,
                    registration_start=registration_start,
                    registration_end=registration_end,
                )
            )
            self.audit.log_action(
                action="event.create",
                resource_type="event",
                resource_id=event.id,
                new_values={"name": name, "venue": venue, "capacity": capacity},
                user_id=user_id,
            )
            return event

        event = run_atomic(self.db, work)
        logger.info("Event created. event_id=%s name=%s", event.id, name)
        return event

    def add_tier(
        self,
        event_id: str,
        name: str,
        price: int,
        max_quantity: int,
        early_bird_price: int | None = None,
        early_bird_end: datetime | None = None,
        user_id: str | None = None,
    ) -> TicketTier:
        if price < 0 or max_quantity < 0:
            raise InvalidArgumentError("Price and quantity must not be negative")
        if early_bird_price is not None:
            if early_bird_end is None:
                raise InvalidArgumentError("Early bird price needs an end date")
            if early_bird_price >= price:
                raise InvalidArgumentError("Early bird price must be less than regular price")

        def work() -> TicketTier:
            event = self._get_event(event_id, for_update=True)
            if event.status == EventStatus.CANCELLED:
                raise FailedPreconditionError("Event has been cancelled")

            allocated = self.event_repository.allocated_capacity(event_id)
            if allocated + max_quantity > event.capacity:
                raise FailedPreconditionError(
                    f"Only {event.capacity - allocated} places left to allocate for this event"
                )

            try:
                tier = self.event_repository.add_tier(
                    TicketTier(
                        event_id=event_id,
                        name=name,
                        price=price,
                        early_bird_price=early_bird_price,
                        early_bird_end=early_bird_end,
                        max_quantity=max_quantity,
                        sold_quantity=0,
                        is_active=True,
                    )
                )
            except IntegrityError as exc:
                raise AlreadyExistsError(f"Tier {name} already exists for this event") from exc

            self.audit.log_action(
                action="event.add_tier",
                resource_type="ticket_tier",
                resource_id=tier.id,
                new_values={"event_id": event_id, "name": name, "price": price, "max_quantity": max_quantity},
                user_id=user_id,
            )
            return tier

        tier = run_atomic(self.db, work)
        logger.info("Tier added. event_id=%s tier=%s max_quantity=%s", event_id, name, max_quantity)
        return tier

    def publish_event(self, event_id: str, user_id: str | None = None) -> Event:
        return self._change_status(event_id, EventStatus.PUBLISHED, user_id)

    def cancel_event(self, event_id: str, user_id: str | None = None) -> Event:
        return self._change_status(event_id, EventStatus.CANCELLED, user_id)

    def get_event(self, event_id: str) -> EventOverview:
        event = self._get_event(event_id)
        return EventOverview(event=event, tiers=self.event_repository.tiers(event_id))

    def _change_status(self, event_id: str, new_status: EventStatus, user_id: str | None) -> Event:
        def work() -> Event:
            event = self._get_event(event_id, for_update=True)
            previous = event.status
            EventStateMachine.validate_transition(previous, new_status)

            event.status = new_status
            if new_status == EventStatus.PUBLISHED:
                event.published_at = datetime.now(timezone.utc)

            self.audit.log_action(
                action=f"event.{new_status.value}",
                resource_type="event",
                resource_id=event.id,
                old_values={"status": previous.value},
                new_values={"status": new_status.value},
                user_id=user_id,
            )
            self.db.flush()
            return event

        event = run_atomic(self.db, work)
        logger.info("Event status changed. event_id=%s status=%s", event_id, new_status.value)
        return event

    def _get_event(self, event_id: str, for_update: bool = False) -> Event:
        event = self.event_repository.get_by_id(event_id, for_update=for_update)
        if event is None:
            raise NotFoundError("Event not found")
        return event
