import threading

import pytest

from ticketing.application import transaction
from ticketing.application.booking_service import BookingService
from ticketing.domain.exceptions import (
    FailedPreconditionError,
    InsufficientInventoryError,
    InvalidArgumentError,
    NotFoundError,
    ResourceExhaustedError,
)
from ticketing.infrastructure.repositories.capacity_ledger import CapacityLedger


def _sold(session_factory, tier_id):
    session = session_factory()
    try:
        tier = CapacityLedger(session).get_tier(tier_id)
        return tier.sold_quantity
    finally:
        session.close()


def test_reserve_and_release(db, seed_event, session_factory):
    _, tiers = seed_event({"General": 5})
    ledger = CapacityLedger(db)

    reservation = ledger.reserve(tiers["General"], 3)
    db.commit()

    assert reservation.sold_quantity == 3
    assert reservation.available == 2
    assert ledger.availability(tiers["General"]) == 2

    ledger.release(tiers["General"], 2)
    db.commit()

    assert _sold(session_factory, tiers["General"]) == 1


def test_reserve_beyond_capacity_reports_available(db, seed_event):
    _, tiers = seed_event({"General": 2})
    ledger = CapacityLedger(db)

    with pytest.raises(InsufficientInventoryError) as exc_info:
        ledger.reserve(tiers["General"], 3)

    assert exc_info.value.available == 2
    assert str(exc_info.value) == "Only 2 tickets available for General"


def test_release_more_than_sold(db, seed_event):
    _, tiers = seed_event({"General": 2})

    with pytest.raises(FailedPreconditionError):
        CapacityLedger(db).release(tiers["General"], 1)


def test_unknown_tier(db):
    with pytest.raises(NotFoundError):
        CapacityLedger(db).reserve("missing", 1)


def test_non_positive_quantity(db, seed_event):
    _, tiers = seed_event({"General": 2})

    with pytest.raises(InvalidArgumentError):
        CapacityLedger(db).reserve(tiers["General"], 0)


def test_concurrent_bookings_never_oversell(session_factory, seed_event, monkeypatch):
    # SQLite serialises writers; give contended threads room to retry.
    monkeypatch.setattr(transaction, "TX_MAX_ATTEMPTS", 50)

    capacity = 4
    attempts = capacity + 1
    event_id, tiers = seed_event({"General": capacity})
    tier_id = tiers["General"]

    barrier = threading.Barrier(attempts)
    outcomes = []
    outcomes_lock = threading.Lock()

    def attempt(index):
        session = session_factory()
        try:
            barrier.wait()
            BookingService(session).book(
                event_id=event_id,
                ticket_tier_id=tier_id,
                quantity=1,
                customer_email=f"fan{index}@example.com",
                customer_name=f"Fan {index}",
            )
            outcome = "booked"
        except ResourceExhaustedError:
            outcome = "exhausted"
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(attempts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["booked"] * capacity + ["exhausted"]
    assert _sold(session_factory, tier_id) == capacity
