from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from ticketing.domain.state_machine import EventStatus
from ticketing.infrastructure.db.models import Event, TicketTier
from ticketing.infrastructure.db.session import Base, engine, get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    ist = timezone(timedelta(hours=5, minutes=30))
    now_ist = datetime.now(ist)
    target = now_ist + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> None:
    event_defs = [
        {
            "name": "Sunidhi Chauhan Live Concert",
            "venue": "Indira Gandhi Arena, New Delhi",
            "starts_at": _dt(days_from_now=10, hour=19, minute=30),
            "capacity": 520,
            "tiers": [
                # Prices in paise.
                {"name": "Regular", "price": 180000, "max_quantity": 400, "early_bird_price": 150000},
                {"name": "VIP", "price": 450000, "max_quantity": 120, "early_bird_price": None},
            ],
        },
        {
            "name": "Holi Festival 2026",
            "venue": "Jawaharlal Nehru Stadium Grounds, Delhi",
            "starts_at": _dt(days_from_now=15, hour=11, minute=0),
            "capacity": 880,
            "tiers": [
                {"name": "General", "price": 120000, "max_quantity": 700, "early_bird_price": 99900},
                {"name": "Premium", "price": 280000, "max_quantity": 180, "early_bird_price": None},
            ],
        },
    ]

    for item in event_defs:
        event = db.execute(
            select(Event).where(Event.name == item["name"])
        ).scalar_one_or_none()
        if event is None:
            event = Event(
                name=item["name"],
                venue=item["venue"],
                starts_at=item["starts_at"],
                capacity=item["capacity"],
                status=EventStatus.PUBLISHED,
                published_at=datetime.now(timezone.utc),
            )
            db.add(event)
            db.flush()
        else:
            event.venue = item["venue"]
            event.starts_at = item["starts_at"]
            event.capacity = item["capacity"]

        early_bird_end = item["starts_at"] - timedelta(days=5)
        for tier_data in item["tiers"]:
            tier = db.execute(
                select(TicketTier)
                .where(TicketTier.event_id == event.id)
                .where(TicketTier.name == tier_data["name"])
            ).scalar_one_or_none()
            if tier is not None:
                # sold_quantity belongs to the capacity ledger; leave it alone.
                tier.price = tier_data["price"]
                tier.early_bird_price = tier_data["early_bird_price"]
                tier.early_bird_end = early_bird_end if tier_data["early_bird_price"] else None
                continue

            db.add(
                TicketTier(
                    event_id=event.id,
                    name=tier_data["name"],
                    price=tier_data["price"],
                    early_bird_price=tier_data["early_bird_price"],
                    early_bird_end=early_bird_end if tier_data["early_bird_price"] else None,
                    max_quantity=tier_data["max_quantity"],
                    sold_quantity=0,
                    is_active=True,
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_events(db)
    print("Seed complete: Sunidhi concert and Holi festival published with ticket tiers.")


if __name__ == "__main__":
    main()
