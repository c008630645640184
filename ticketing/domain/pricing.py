# ticketing/domain/pricing.py

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol


class PricedTier(Protocol):
    price: int
    early_bird_price: int | None
    early_bird_end: datetime | None


@dataclass(frozen=True)
class GroupBenefits:
    discount_percentage: int
    complimentary_tickets: int


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def effective_price(tier: PricedTier, now: datetime) -> int:
    """
    Early-bird price while it is configured and the cutoff has not passed,
    otherwise the base price.
    """
    cutoff = as_utc(tier.early_bird_end)
    if tier.early_bird_price is not None and cutoff is not None and as_utc(now) <= cutoff:
        return tier.early_bird_price
    return tier.price


def calculate_group_benefits(size: int) -> GroupBenefits:
    if size >= 20:
        return GroupBenefits(discount_percentage=20, complimentary_tickets=size // 10)
    if size >= 10:
        return GroupBenefits(discount_percentage=15, complimentary_tickets=size // 10)
    if size >= 5:
        return GroupBenefits(discount_percentage=10, complimentary_tickets=0)
    return GroupBenefits(discount_percentage=0, complimentary_tickets=0)


def group_discount(base_amount: int, discount_percentage: int) -> int:
    # Minor units, rounded down.
    return (base_amount * discount_percentage) // 100
