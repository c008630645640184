from datetime import datetime, timedelta, timezone

from ticketing.domain.state_machine import PaymentStatus
from ticketing.infrastructure.repositories import order_repository, ticket_repository
from ticketing.infrastructure.repositories.order_repository import OrderRepository


def _order(client, event_id, items, user_id="user-1"):
    return client.post(
        "/tickets/orders",
        json={
            "user_id": user_id,
            "event_id": event_id,
            "items": [{"tier_id": tier_id, "quantity": quantity} for tier_id, quantity in items],
        },
    )


def _tier(client, event_id, name):
    tiers = client.get(f"/events/{event_id}").json()["tiers"]
    return next(tier for tier in tiers if tier["name"] == name)


# ---------------------
# PLACING ORDERS
# ---------------------

def test_order_reserves_capacity_and_prices_items(client, seed_event):
    event_id, tiers = seed_event({"A": 5, "B": 5}, price=50000)

    response = _order(client, event_id, [(tiers["A"], 2), (tiers["B"], 1)])

    assert response.status_code == 200
    body = response.json()
    assert body["order"]["payment_status"] == "pending"
    assert body["order"]["order_number"].startswith("ORD-")
    assert body["order"]["total_amount"] == 150000
    assert [item["total_price"] for item in body["items"]] == [100000, 50000]
    assert _tier(client, event_id, "A")["sold_quantity"] == 2


def test_order_uses_early_bird_price(client, seed_event):
    event_id, tiers = seed_event(
        {"A": 5},
        price=50000,
        early_bird_price=40000,
        early_bird_end=datetime.now(timezone.utc) + timedelta(days=2),
    )

    body = _order(client, event_id, [(tiers["A"], 2)]).json()

    assert body["items"][0]["unit_price"] == 40000
    assert body["order"]["total_amount"] == 80000


def test_failed_item_rolls_back_earlier_reservations(client, seed_event):
    event_id, tiers = seed_event({"A": 5, "B": 2})
    sold_out = client.post(
        "/bookings",
        json={
            "event_id": event_id,
            "ticket_tier_id": tiers["B"],
            "quantity": 2,
            "customer_email": "early@example.com",
            "customer_name": "Early",
        },
    )
    assert sold_out.status_code == 200

    response = _order(client, event_id, [(tiers["A"], 3), (tiers["B"], 1)])

    assert response.status_code == 409
    assert response.json()["detail"] == "Only 0 tickets available for B"
    assert _tier(client, event_id, "A")["sold_quantity"] == 0


def test_empty_order_is_invalid(client, seed_event):
    event_id, _ = seed_event({"A": 5})

    response = _order(client, event_id, [])

    assert response.status_code == 400
    assert response.json()["detail"] == "Order must contain at least one item"


def test_non_positive_quantity_is_invalid(client, seed_event):
    event_id, tiers = seed_event({"A": 5})

    assert _order(client, event_id, [(tiers["A"], 0)]).status_code == 400


def test_unpublished_event_is_not_open(client, seed_event):
    event_id, tiers = seed_event({"A": 5}, published=False)

    response = _order(client, event_id, [(tiers["A"], 1)])

    assert response.status_code == 409
    assert response.json()["detail"] == "Event is not available for registration"


def test_unknown_event(client):
    assert _order(client, "missing", [("tier", 1)]).status_code == 404


def test_unknown_tier(client, seed_event):
    event_id, _ = seed_event({"A": 5})

    response = _order(client, event_id, [("missing", 1)])

    assert response.status_code == 404
    assert response.json()["detail"] == "Ticket tier missing not found or inactive"


def test_registration_window_closed(client):
    now = datetime.now(timezone.utc)
    event = client.post(
        "/events",
        json={
            "name": "Closed Show",
            "venue": "Hall 1",
            "starts_at": (now + timedelta(days=10)).isoformat(),
            "capacity": 10,
            "registration_start": (now - timedelta(days=5)).isoformat(),
            "registration_end": (now - timedelta(days=1)).isoformat(),
        },
    ).json()
    tier = client.post(
        f"/events/{event['id']}/tiers",
        json={"name": "A", "price": 1000, "max_quantity": 10},
    ).json()
    client.post(f"/events/{event['id']}/publish")

    response = _order(client, event["id"], [(tier["id"], 1)])

    assert response.status_code == 409
    assert response.json()["detail"] == "Registration is not currently open for this event"


# ---------------------
# COMPLETION
# ---------------------

def test_complete_order_mints_one_ticket_per_unit(client, seed_event, notifier):
    event_id, tiers = seed_event({"A": 5, "B": 5})
    order = _order(client, event_id, [(tiers["A"], 2), (tiers["B"], 1)]).json()["order"]

    response = client.post(
        "/tickets/orders/complete",
        json={"order_id": order["id"], "payment_reference": "pay_001"},
    )

    assert response.status_code == 200
    tickets = response.json()["tickets"]
    assert len(tickets) == 3
    assert len({ticket["ticket_number"] for ticket in tickets}) == 3
    assert len({ticket["qr_code"] for ticket in tickets}) == 3
    assert all(ticket["status"] == "active" for ticket in tickets)
    assert all(ticket["ticket_number"].startswith("TKT-") for ticket in tickets)
    assert notifier.ticket_confirmations == [(order["order_number"], 3)]


def test_second_completion_fails_and_mints_nothing(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    order = _order(client, event_id, [(tiers["A"], 2)]).json()["order"]
    payload = {"order_id": order["id"], "payment_reference": "pay_002"}

    assert client.post("/tickets/orders/complete", json=payload).status_code == 200
    again = client.post("/tickets/orders/complete", json=payload)

    assert again.status_code == 409
    assert again.json()["detail"] == "Order already processed"
    assert client.get("/tickets/users/user-1").json()["total"] == 2


def test_complete_unknown_order(client):
    response = client.post(
        "/tickets/orders/complete",
        json={"order_id": "missing", "payment_reference": "pay_003"},
    )

    assert response.status_code == 404


def test_payment_reference_cannot_be_reused(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    first = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]
    second = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]

    client.post("/tickets/orders/complete", json={"order_id": first["id"], "payment_reference": "pay_dup"})
    response = client.post(
        "/tickets/orders/complete",
        json={"order_id": second["id"], "payment_reference": "pay_dup"},
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Payment reference already used"


def test_order_number_collision_is_retried(client, seed_event, monkeypatch):
    event_id, tiers = seed_event({"A": 5})
    first = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]
    numbers = iter([first["order_number"], "ORD-RETRY-0001"])
    monkeypatch.setattr(order_repository, "new_order_number", lambda: next(numbers))

    response = _order(client, event_id, [(tiers["A"], 2)])

    assert response.status_code == 200
    assert response.json()["order"]["order_number"] == "ORD-RETRY-0001"
    # The failed attempt's reservation was rolled back.
    assert _tier(client, event_id, "A")["sold_quantity"] == 3


def test_ticket_number_collision_is_retried(client, seed_event, monkeypatch):
    event_id, tiers = seed_event({"A": 5})
    first = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]
    taken = client.post(
        "/tickets/orders/complete",
        json={"order_id": first["id"], "payment_reference": "pay_first"},
    ).json()["tickets"][0]["ticket_number"]
    second = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]
    numbers = iter([taken, "TKT-RETRY-0001"])
    monkeypatch.setattr(ticket_repository, "new_ticket_number", lambda: next(numbers))

    response = client.post(
        "/tickets/orders/complete",
        json={"order_id": second["id"], "payment_reference": "pay_second"},
    )

    assert response.status_code == 200
    assert [ticket["ticket_number"] for ticket in response.json()["tickets"]] == ["TKT-RETRY-0001"]
    assert client.get("/tickets/users/user-1").json()["total"] == 2


# ---------------------
# PAYMENT GATEWAY
# ---------------------

def test_payment_checkout_and_confirmation(client, seed_event, gateway, db):
    event_id, tiers = seed_event({"A": 5}, price=75000)
    order = _order(client, event_id, [(tiers["A"], 2)]).json()["order"]

    checkout = client.post(f"/tickets/orders/{order['id']}/payment")
    assert checkout.status_code == 200
    session = checkout.json()
    assert session["amount"] == 150000
    assert session["currency"] == "INR"
    assert gateway.checkouts == [(order["id"], 150000)]
    assert OrderRepository(db).get_by_id(order["id"]).gateway_order_id == session["gateway_order_id"]

    confirm_payload = {
        "gateway_order_id": session["gateway_order_id"],
        "payment_id": "pay_rzp_1",
        "signature": "good-signature",
    }
    confirmed = client.post(f"/tickets/orders/{order['id']}/payment/confirm", json=confirm_payload)

    assert confirmed.status_code == 200
    assert confirmed.json()["success"] is True
    assert confirmed.json()["order_number"] == order["order_number"]
    tickets = confirmed.json()["tickets"]
    assert len(tickets) == 2

    replay = client.post(f"/tickets/orders/{order['id']}/payment/confirm", json=confirm_payload)
    assert replay.status_code == 200
    assert [t["id"] for t in replay.json()["tickets"]] == [t["id"] for t in tickets]


def test_bad_signature_fails_order_and_releases_capacity(client, seed_event, session_factory):
    event_id, tiers = seed_event({"A": 5})
    order = _order(client, event_id, [(tiers["A"], 3)]).json()["order"]
    session = client.post(f"/tickets/orders/{order['id']}/payment").json()

    response = client.post(
        f"/tickets/orders/{order['id']}/payment/confirm",
        json={
            "gateway_order_id": session["gateway_order_id"],
            "payment_id": "pay_rzp_2",
            "signature": "bad-signature",
        },
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Invalid payment signature"
    assert _tier(client, event_id, "A")["sold_quantity"] == 0

    fresh = session_factory()
    try:
        assert OrderRepository(fresh).get_by_id(order["id"]).payment_status == PaymentStatus.FAILED
    finally:
        fresh.close()


def test_payment_cannot_be_reused_for_another_order(client, seed_event, gateway):
    event_id, tiers = seed_event({"Regular": 5, "VIP": 5})
    cheap = _order(client, event_id, [(tiers["Regular"], 1)]).json()["order"]
    vip = _order(client, event_id, [(tiers["VIP"], 5)]).json()["order"]
    session = client.post(f"/tickets/orders/{cheap['id']}/payment").json()
    payload = {
        "gateway_order_id": session["gateway_order_id"],
        "payment_id": "pay_rzp_cheap",
        "signature": "good-signature",
    }

    not_started = client.post(f"/tickets/orders/{vip['id']}/payment/confirm", json=payload)

    assert not_started.status_code == 409
    assert not_started.json()["detail"] == "Payment has not been started for this order"

    client.post(f"/tickets/orders/{vip['id']}/payment")
    mismatched = client.post(f"/tickets/orders/{vip['id']}/payment/confirm", json=payload)

    assert mismatched.status_code == 400
    assert mismatched.json()["detail"] == "Gateway order does not match this order"
    assert client.get("/tickets/users/user-1").json()["total"] == 0
    assert _tier(client, event_id, "VIP")["sold_quantity"] == 5


def test_refund_releases_active_tickets(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    order = _order(client, event_id, [(tiers["A"], 3)]).json()["order"]
    tickets = client.post(
        "/tickets/orders/complete",
        json={"order_id": order["id"], "payment_reference": "pay_refund"},
    ).json()["tickets"]
    assert client.post(f"/tickets/validate/{tickets[0]['qr_code']}").json()["is_valid"] is True

    refunded = client.post(f"/tickets/orders/{order['id']}/refund")

    assert refunded.status_code == 200
    assert refunded.json()["payment_status"] == "refunded"
    # The used ticket keeps its seat.
    assert _tier(client, event_id, "A")["sold_quantity"] == 1

    statuses = sorted(t["status"] for t in client.get("/tickets/users/user-1").json()["tickets"])
    assert statuses == ["refunded", "refunded", "used"]


def test_pending_order_cannot_be_refunded(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    order = _order(client, event_id, [(tiers["A"], 1)]).json()["order"]

    assert client.post(f"/tickets/orders/{order['id']}/refund").status_code == 409
