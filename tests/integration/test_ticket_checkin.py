import threading

from ticketing.application import transaction
from ticketing.application.ticket_service import TicketService


def _issue_tickets(client, event_id, tier_id, quantity, user_id="user-1", reference="pay_1"):
    order = client.post(
        "/tickets/orders",
        json={
            "user_id": user_id,
            "event_id": event_id,
            "items": [{"tier_id": tier_id, "quantity": quantity}],
        },
    ).json()["order"]
    return client.post(
        "/tickets/orders/complete",
        json={"order_id": order["id"], "payment_reference": reference},
    ).json()["tickets"]


def test_ticket_is_admitted_once(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    ticket = _issue_tickets(client, event_id, tiers["A"], 1)[0]

    first = client.post(f"/tickets/validate/{ticket['qr_code']}")
    assert first.status_code == 200
    assert first.json()["is_valid"] is True
    assert first.json()["message"] == "Ticket validated successfully"
    assert first.json()["ticket"]["status"] == "used"
    assert first.json()["ticket"]["used_at"] is not None

    second = client.post(f"/tickets/validate/{ticket['qr_code']}")
    assert second.status_code == 200
    assert second.json()["is_valid"] is False
    assert second.json()["message"] == "Ticket has already been used"


def test_unknown_scan_code(client):
    response = client.post("/tickets/validate/QR-not-a-real-code")

    assert response.status_code == 404
    assert response.json()["detail"] == "Ticket not found"


def test_cancelled_ticket_is_rejected_and_releases_a_seat(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    ticket = _issue_tickets(client, event_id, tiers["A"], 2)[0]

    cancelled = client.post(f"/tickets/{ticket['id']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.get(f"/events/{event_id}").json()["tiers"][0]["sold_quantity"] == 1

    scan = client.post(f"/tickets/validate/{ticket['qr_code']}").json()
    assert scan["is_valid"] is False
    assert scan["message"] == "Ticket is cancelled"

    assert client.post(f"/tickets/{ticket['id']}/cancel").status_code == 409


def test_used_ticket_cannot_be_cancelled(client, seed_event):
    event_id, tiers = seed_event({"A": 5})
    ticket = _issue_tickets(client, event_id, tiers["A"], 1)[0]
    client.post(f"/tickets/validate/{ticket['qr_code']}")

    assert client.post(f"/tickets/{ticket['id']}/cancel").status_code == 409


def test_racing_scanners_admit_exactly_once(client, seed_event, session_factory, monkeypatch):
    monkeypatch.setattr(transaction, "TX_MAX_ATTEMPTS", 50)
    event_id, tiers = seed_event({"A": 5})
    qr_code = _issue_tickets(client, event_id, tiers["A"], 1)[0]["qr_code"]

    scanners = 4
    barrier = threading.Barrier(scanners)
    results = []
    results_lock = threading.Lock()

    def scan():
        session = session_factory()
        try:
            barrier.wait()
            outcome = TicketService(session).validate_ticket(qr_code)
        finally:
            session.close()
        with results_lock:
            results.append(outcome.is_valid)

    threads = [threading.Thread(target=scan) for _ in range(scanners)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False] * (scanners - 1) + [True]


def test_list_user_tickets_filters_and_pages(client, seed_event):
    event_id, tiers = seed_event({"A": 10})
    other_event, other_tiers = seed_event({"B": 10})
    tickets = _issue_tickets(client, event_id, tiers["A"], 3, reference="pay_a")
    _issue_tickets(client, other_event, other_tiers["B"], 2, reference="pay_b")
    _issue_tickets(client, event_id, tiers["A"], 1, user_id="someone-else", reference="pay_c")
    client.post(f"/tickets/validate/{tickets[0]['qr_code']}")

    everything = client.get("/tickets/users/user-1").json()
    assert everything["total"] == 5

    by_event = client.get("/tickets/users/user-1", params={"event_id": event_id}).json()
    assert by_event["total"] == 3
    assert all(ticket["event_id"] == event_id for ticket in by_event["tickets"])

    used = client.get("/tickets/users/user-1", params={"status": "used"}).json()
    assert used["total"] == 1
    assert used["tickets"][0]["id"] == tickets[0]["id"]

    page = client.get("/tickets/users/user-1", params={"limit": 2, "offset": 4}).json()
    assert page["total"] == 5
    assert len(page["tickets"]) == 1


def test_list_limit_is_clamped(client, seed_event):
    event_id, tiers = seed_event({"A": 3})
    _issue_tickets(client, event_id, tiers["A"], 3)

    zero = client.get("/tickets/users/user-1", params={"limit": 0}).json()
    assert len(zero["tickets"]) == 1

    huge = client.get("/tickets/users/user-1", params={"limit": 1000}).json()
    assert len(huge["tickets"]) == 3
