# ticketing/infrastructure/repositories/capacity_ledger.py

from dataclasses import dataclass

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from ticketing.infrastructure.db.models import TicketTier
from ticketing.domain.exceptions import (
    FailedPreconditionError,
    InsufficientInventoryError,
    InvalidArgumentError,
    NotFoundError,
)


@dataclass(frozen=True)
class Reservation:
    tier_id: str
    quantity: int
    sold_quantity: int
    max_quantity: int

    @property
    def available(self) -> int:
        return self.max_quantity - self.sold_quantity


class CapacityLedger:
    """
    Sole writer of ticket_tiers.sold_quantity.

    Check and increment happen in one conditional UPDATE so two
    concurrent reservations can never both pass the availability
    check against a stale read. Only the tier row is locked.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_tier(self, tier_id: str, event_id: str | None = None) -> TicketTier | None:
        stmt = select(TicketTier).where(TicketTier.id == tier_id)
        if event_id is not None:
            stmt = stmt.where(TicketTier.event_id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def reserve(self, tier_id: str, quantity: int) -> Reservation:
        if quantity <= 0:
            raise InvalidArgumentError("Quantity must be positive")

        stmt = (
            update(TicketTier)
            .where(TicketTier.id == tier_id)
            .where(TicketTier.is_active.is_(True))
            .where(TicketTier.sold_quantity + quantity <= TicketTier.max_quantity)
            .values(sold_quantity=TicketTier.sold_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            tier = self._reload(tier_id)
            if tier is None or not tier.is_active:
                raise NotFoundError("Ticket tier not found")
            raise InsufficientInventoryError(
                available=tier.max_quantity - tier.sold_quantity,
                tier_name=tier.name,
            )

        tier = self._reload(tier_id)
        return Reservation(
            tier_id=tier_id,
            quantity=quantity,
            sold_quantity=tier.sold_quantity,
            max_quantity=tier.max_quantity,
        )

    def release(self, tier_id: str, quantity: int) -> None:
        """Compensating action for a reservation that is being undone."""
        if quantity <= 0:
            raise InvalidArgumentError("Quantity must be positive")

        stmt = (
            update(TicketTier)
            .where(TicketTier.id == tier_id)
            .where(TicketTier.sold_quantity >= quantity)
            .values(sold_quantity=TicketTier.sold_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            if self._reload(tier_id) is None:
                raise NotFoundError("Ticket tier not found")
            raise FailedPreconditionError(
                f"Cannot release {quantity} tickets; fewer were sold"
            )
        self._reload(tier_id)

    def availability(self, tier_id: str) -> int:
        tier = self._reload(tier_id)
        if tier is None:
            raise NotFoundError("Ticket tier not found")
        return tier.max_quantity - tier.sold_quantity

    def _reload(self, tier_id: str) -> TicketTier | None:
        # populate_existing refreshes any copy already in the identity map.
        stmt = (
            select(TicketTier)
            .where(TicketTier.id == tier_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()
