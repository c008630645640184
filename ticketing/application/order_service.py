import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ticketing.application.effects import PostCommitEffects, Schedule, run_now
from ticketing.application.transaction import run_atomic
from ticketing.domain.exceptions import (
    AlreadyExistsError,
    CodeCollisionError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PaymentVerificationError,
)
from ticketing.domain.pricing import as_utc, effective_price
from ticketing.domain.state_machine import EventStatus, PaymentStatus, TicketStatus
from ticketing.infrastructure.db.models import Event, OrderItem, Ticket, TicketOrder
from ticketing.infrastructure.payments.razorpay_gateway import CheckoutSession, RazorpayGateway
from ticketing.infrastructure.repositories.audit_repository import AuditRepository
from ticketing.infrastructure.repositories.capacity_ledger import CapacityLedger
from ticketing.infrastructure.repositories.event_repository import EventRepository
from ticketing.infrastructure.repositories.order_repository import OrderRepository
from ticketing.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLine:
    tier_id: str
    quantity: int


@dataclass(frozen=True)
class PlacedOrder:
    order: TicketOrder
    items: list[OrderItem]


@dataclass(frozen=True)
class PaymentResult:
    order: TicketOrder
    tickets: list[Ticket]


class OrderService:
    """
    Multi-tier cart orders. Capacity is reserved when the order is
    placed; tickets are minted when payment completes.
    """

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway | None = None,
        effects: PostCommitEffects | None = None,
        schedule: Schedule = run_now,
    ):
        self.db = db
        self.gateway = gateway
        self.effects = effects
        self.schedule = schedule
        self.order_repository = OrderRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.event_repository = EventRepository(db)
        self.ledger = CapacityLedger(db)
        self.audit = AuditRepository(db)

    # ------------------------------------------------------------------
    # Placing orders
    # ------------------------------------------------------------------

    def create_order(self, user_id: str, event_id: str, lines: list[OrderLine]) -> PlacedOrder:
        if not lines:
            raise InvalidArgumentError("Order must contain at least one item")
        for line in lines:
            if line.quantity <= 0:
                raise InvalidArgumentError("Quantity must be positive")

        def work() -> PlacedOrder:
            event = self.event_repository.get_by_id(event_id)
            if event is None:
                raise NotFoundError("Event not found")
            self._ensure_registration_open(event)

            now = datetime.now(timezone.utc)
            priced: list[tuple[OrderLine, int]] = []
            total = 0
            for line in lines:
                tier = self.ledger.get_tier(line.tier_id, event_id=event_id)
                if tier is None or not tier.is_active:
                    raise NotFoundError(f"Ticket tier {line.tier_id} not found or inactive")

                unit_price = effective_price(tier, now)
                self.ledger.reserve(line.tier_id, line.quantity)
                priced.append((line, unit_price))
                total += unit_price * line.quantity

            order = self.order_repository.create_order(
                user_id=user_id,
                event_id=event_id,
                total_amount=total,
            )
            items = [
                self.order_repository.add_item(
                    order,
                    tier_id=line.tier_id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                )
                for line, unit_price in priced
            ]
            self.db.flush()
            return PlacedOrder(order=order, items=items)

        placed = run_atomic(self.db, work, retry_on=(OperationalError, CodeCollisionError))
        logger.info(
            "Order placed. order_number=%s user_id=%s items=%s total=%s",
            placed.order.order_number,
            user_id,
            len(placed.items),
            placed.order.total_amount,
        )
        return placed

    def _ensure_registration_open(self, event: Event) -> None:
        if event.status != EventStatus.PUBLISHED:
            raise FailedPreconditionError("Event is not available for registration")

        now = datetime.now(timezone.utc)
        start = as_utc(event.registration_start)
        end = as_utc(event.registration_end)
        if (start is not None and now < start) or (end is not None and now > end):
            raise FailedPreconditionError("Registration is not currently open for this event")

    # ------------------------------------------------------------------
    # Completion and ticket minting
    # ------------------------------------------------------------------

    def complete_order(self, order_id: str, payment_reference: str) -> list[Ticket]:
        def work() -> tuple[TicketOrder, list[Ticket]]:
            order = self._get_order(order_id)
            if order.payment_status != PaymentStatus.PENDING:
                raise FailedPreconditionError("Order already processed")

            try:
                order = self.order_repository.transition(
                    order,
                    PaymentStatus.COMPLETED,
                    payment_reference=payment_reference,
                )
            except IntegrityError as exc:
                raise AlreadyExistsError("Payment reference already used") from exc

            self._mint_tickets(order)
            return order, self.ticket_repository.list_for_order(order.id)

        order, tickets = run_atomic(self.db, work, retry_on=(OperationalError, CodeCollisionError))
        logger.info(
            "Order completed. order_number=%s tickets=%s",
            order.order_number,
            len(tickets),
        )

        if self.effects is not None:
            self.schedule(
                self.effects.tickets_issued,
                order.user_id,
                order.order_number,
                len(tickets),
                order.total_amount,
            )
        return tickets

    def _mint_tickets(self, order: TicketOrder) -> None:
        # Units already minted are skipped; (order_item_id, unit_index) is unique.
        for item in self.order_repository.get_items(order.id):
            minted = self.ticket_repository.minted_units(item.id)
            for unit_index in range(item.quantity):
                if unit_index not in minted:
                    self.ticket_repository.mint(order, item, unit_index)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise CodeCollisionError("Ticket number collision") from exc

    # ------------------------------------------------------------------
    # Payment gateway flow
    # ------------------------------------------------------------------

    def start_payment(self, order_id: str) -> CheckoutSession:
        order = self._get_order(order_id)
        if order.payment_status != PaymentStatus.PENDING:
            raise FailedPreconditionError("Order is not awaiting payment")

        session = self._require_gateway().create_checkout_session(
            order_id=order.id,
            amount=order.total_amount,
        )

        def work() -> None:
            if not self.order_repository.set_gateway_order(order_id, session.gateway_order_id):
                raise FailedPreconditionError("Order is not awaiting payment")

        run_atomic(self.db, work)
        return session

    def confirm_payment(
        self,
        order_id: str,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
    ) -> PaymentResult:
        order = self._get_order(order_id)

        if order.payment_status == PaymentStatus.COMPLETED:
            logger.info("Payment confirmation replayed. order_number=%s", order.order_number)
            return PaymentResult(
                order=order,
                tickets=self.ticket_repository.list_for_order(order.id),
            )
        if order.payment_status != PaymentStatus.PENDING:
            raise FailedPreconditionError("Order already processed")
        if order.gateway_order_id is None:
            raise FailedPreconditionError("Payment has not been started for this order")
        if order.gateway_order_id != gateway_order_id:
            raise InvalidArgumentError("Gateway order does not match this order")

        try:
            self._require_gateway().confirm_payment(gateway_order_id, payment_id, signature)
        except PaymentVerificationError:
            logger.warning("Payment verification failed. order_id=%s", order_id)
            self.fail_order(order_id)
            raise

        tickets = self.complete_order(order_id, payment_reference=payment_id)
        return PaymentResult(order=self.order_repository.refresh(order_id), tickets=tickets)

    def fail_order(self, order_id: str) -> TicketOrder:
        """pending -> failed, giving the reserved capacity back."""

        def work() -> TicketOrder:
            order = self._get_order(order_id)
            order = self.order_repository.transition(order, PaymentStatus.FAILED)
            for item in self.order_repository.get_items(order.id):
                self.ledger.release(item.tier_id, item.quantity)
            return order

        order = run_atomic(self.db, work)
        logger.info("Order failed. order_number=%s", order.order_number)
        return order

    def refund_order(self, order_id: str) -> TicketOrder:
        def work() -> TicketOrder:
            order = self._get_order(order_id)
            order = self.order_repository.transition(order, PaymentStatus.REFUNDED)

            released: Counter[str] = Counter()
            for ticket in self.ticket_repository.list_for_order(order.id):
                if ticket.status != TicketStatus.ACTIVE:
                    continue
                self.ticket_repository.transition(ticket, TicketStatus.REFUNDED)
                released[ticket.tier_id] += 1

            for tier_id, quantity in released.items():
                self.ledger.release(tier_id, quantity)

            self.audit.log_action(
                action="order.refund",
                resource_type="ticket_order",
                resource_id=order.id,
                old_values={"payment_status": PaymentStatus.COMPLETED.value},
                new_values={
                    "payment_status": order.payment_status.value,
                    "tickets_refunded": sum(released.values()),
                },
                user_id=order.user_id,
            )
            return order

        order = run_atomic(self.db, work)
        logger.info("Order refunded. order_number=%s", order.order_number)
        return order

    def _get_order(self, order_id: str) -> TicketOrder:
        order = self.order_repository.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _require_gateway(self) -> RazorpayGateway:
        if self.gateway is None:
            raise FailedPreconditionError("Payment gateway is not configured")
        return self.gateway
