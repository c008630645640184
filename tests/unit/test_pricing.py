from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from ticketing.domain.codes import (
    new_booking_code,
    new_invite_code,
    new_order_number,
    new_scan_code,
    new_ticket_number,
)
from ticketing.domain.pricing import (
    GroupBenefits,
    as_utc,
    calculate_group_benefits,
    effective_price,
    group_discount,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tier(price=1000, early_bird_price=None, early_bird_end=None):
    return SimpleNamespace(
        price=price,
        early_bird_price=early_bird_price,
        early_bird_end=early_bird_end,
    )


# ---------------------
# EARLY BIRD PRICING
# ---------------------

def test_base_price_without_early_bird():
    assert effective_price(_tier(), NOW) == 1000


def test_early_bird_price_before_cutoff():
    tier = _tier(early_bird_price=800, early_bird_end=NOW + timedelta(days=1))
    assert effective_price(tier, NOW) == 800


def test_early_bird_price_on_cutoff_instant():
    tier = _tier(early_bird_price=800, early_bird_end=NOW)
    assert effective_price(tier, NOW) == 800


def test_base_price_after_cutoff():
    tier = _tier(early_bird_price=800, early_bird_end=NOW - timedelta(seconds=1))
    assert effective_price(tier, NOW) == 1000


def test_early_bird_price_without_end_is_ignored():
    assert effective_price(_tier(early_bird_price=800), NOW) == 1000


def test_naive_cutoff_is_read_as_utc():
    naive_end = (NOW + timedelta(hours=1)).replace(tzinfo=None)
    tier = _tier(early_bird_price=800, early_bird_end=naive_end)
    assert effective_price(tier, NOW) == 800
    assert as_utc(naive_end).tzinfo is timezone.utc


# ---------------------
# GROUP BENEFITS
# ---------------------

@pytest.mark.parametrize(
    "size, expected",
    [
        (4, GroupBenefits(0, 0)),
        (5, GroupBenefits(10, 0)),
        (9, GroupBenefits(10, 0)),
        (10, GroupBenefits(15, 1)),
        (19, GroupBenefits(15, 1)),
        (20, GroupBenefits(20, 2)),
        (35, GroupBenefits(20, 3)),
    ],
)
def test_group_benefit_bands(size, expected):
    assert calculate_group_benefits(size) == expected


def test_group_discount_rounds_down():
    assert group_discount(999, 15) == 149
    assert group_discount(1000, 0) == 0


# ---------------------
# CODES
# ---------------------

def test_booking_code_shape():
    code = new_booking_code()
    assert len(code) == 7
    assert code.isalnum() and code == code.upper()


def test_invite_code_shape():
    assert len(new_invite_code()) == 10


def test_order_and_ticket_numbers_are_prefixed():
    assert new_order_number().startswith("ORD-")
    assert new_ticket_number().startswith("TKT-")


def test_scan_codes_do_not_repeat():
    codes = {new_scan_code() for _ in range(200)}
    assert len(codes) == 200
