# ticketing/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from ticketing.infrastructure.db.models import Event, TicketTier


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str, for_update: bool = False) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, event: Event) -> Event:
        self.db.add(event)
        self.db.flush()
        return event

    def tiers(self, event_id: str) -> list[TicketTier]:
        stmt = (
            select(TicketTier)
            .where(TicketTier.event_id == event_id)
            .order_by(TicketTier.price, TicketTier.name)
        )
        return list(self.db.execute(stmt).scalars().all())

    def allocated_capacity(self, event_id: str) -> int:
        stmt = select(func.coalesce(func.sum(TicketTier.max_quantity), 0)).where(
            TicketTier.event_id == event_id
        )
        return int(self.db.execute(stmt).scalar_one())

    def add_tier(self, tier: TicketTier) -> TicketTier:
        self.db.add(tier)
        self.db.flush()
        return tier
