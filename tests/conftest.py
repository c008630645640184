import os

# Point the app module at an in-memory database before anything imports it.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("TX_RETRY_BACKOFF", "0.01")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from ticketing.api.dependencies import get_db, get_gateway, get_notifier
from ticketing.application.event_service import EventService
from ticketing.domain.exceptions import PaymentVerificationError
from ticketing.infrastructure.db import models  # noqa: F401
from ticketing.infrastructure.db.session import Base, build_engine
from ticketing.infrastructure.payments.razorpay_gateway import CheckoutSession
from ticketing.main import create_app


class FakeNotifier:
    def __init__(self):
        self.booking_emails = []
        self.ticket_confirmations = []
        self.group_invitations = []

    def send_confirmation_email(self, booking_code, customer_email, customer_name):
        self.booking_emails.append(booking_code)

    def send_ticket_confirmation(self, user_id, order_number, ticket_count, total_amount):
        self.ticket_confirmations.append((order_number, ticket_count))

    def send_group_invitation(self, recipient_email, recipient_name, inviter_name, group_name, invite_code):
        self.group_invitations.append((invite_code, recipient_email))


class FakeGateway:
    """Accepts every signature except "bad-signature"."""

    def __init__(self):
        self.checkouts = []

    def create_checkout_session(self, order_id, amount):
        gateway_order_id = f"order_fake_{len(self.checkouts) + 1}"
        self.checkouts.append((order_id, amount))
        return CheckoutSession(
            gateway_order_id=gateway_order_id,
            amount=amount,
            currency="INR",
            key_id="rzp_test_key",
        )

    def confirm_payment(self, gateway_order_id, payment_id, signature):
        if signature == "bad-signature":
            raise PaymentVerificationError("Invalid payment signature")


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ticketing.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(session_factory, notifier, gateway):
    app = create_app(init_db=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_gateway] = lambda: gateway
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed_event(db):
    """
    Creates an event with one tier per entry of ``tiers`` (name -> max
    quantity) and returns (event_id, {name: tier_id}).
    """

    def _seed(
        tiers: dict[str, int],
        price: int = 100000,
        published: bool = True,
        starts_in: timedelta = timedelta(days=10),
        early_bird_price: int | None = None,
        early_bird_end: datetime | None = None,
    ) -> tuple[str, dict[str, str]]:
        service = EventService(db)
        event = service.create_event(
            name="Sunidhi Chauhan Live Concert",
            venue="Indira Gandhi Arena, New Delhi",
            starts_at=datetime.now(timezone.utc) + starts_in,
            capacity=sum(tiers.values()),
        )
        event_id = event.id

        tier_ids = {}
        for name, max_quantity in tiers.items():
            tier = service.add_tier(
                event_id=event_id,
                name=name,
                price=price,
                max_quantity=max_quantity,
                early_bird_price=early_bird_price,
                early_bird_end=early_bird_end,
            )
            tier_ids[name] = tier.id

        if published:
            service.publish_event(event_id)
        return event_id, tier_ids

    return _seed
