import secrets
import string
from datetime import datetime, timezone

_ALPHABET = string.ascii_uppercase + string.digits


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_booking_code() -> str:
    """Short, human-shareable code for a quick booking."""
    return _random_token(7)


def new_invite_code() -> str:
    return _random_token(10)


def new_order_number() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"ORD-{stamp}-{_random_token(9)}"


def new_ticket_number() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"TKT-{stamp}-{_random_token(9)}"


def new_scan_code() -> str:
    """Unguessable QR payload used at the door."""
    return f"QR-{secrets.token_urlsafe(24)}"
