# ticketing/infrastructure/repositories/order_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ticketing.infrastructure.db.models import OrderItem, TicketOrder
from ticketing.domain.codes import new_order_number
from ticketing.domain.exceptions import CodeCollisionError, FailedPreconditionError
from ticketing.domain.state_machine import OrderStateMachine, PaymentStatus


class OrderRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, order_id: str, for_update: bool = False) -> TicketOrder | None:
        stmt = select(TicketOrder).where(TicketOrder.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_items(self, order_id: str) -> list[OrderItem]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at, OrderItem.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def create_order(
        self,
        user_id: str,
        event_id: str,
        total_amount: int,
    ) -> TicketOrder:
        order = TicketOrder(
            user_id=user_id,
            event_id=event_id,
            order_number=new_order_number(),
            total_amount=total_amount,
            payment_status=PaymentStatus.PENDING,
        )
        self.db.add(order)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise CodeCollisionError("Order number collision") from exc
        return order

    def add_item(
        self,
        order: TicketOrder,
        tier_id: str,
        quantity: int,
        unit_price: int,
    ) -> OrderItem:
        item = OrderItem(
            order_id=order.id,
            tier_id=tier_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=unit_price * quantity,
        )
        self.db.add(item)
        return item

    def transition(
        self,
        order: TicketOrder,
        new_status: PaymentStatus,
        payment_reference: str | None = None,
    ) -> TicketOrder:
        """
        Legal transition applied as a compare-and-set on the observed
        payment status. Losing the race raises, which is what keeps
        a second completion from minting again.
        """
        OrderStateMachine.validate_transition(order.payment_status, new_status)

        values: dict = {"payment_status": new_status}
        if payment_reference is not None:
            values["payment_reference"] = payment_reference

        stmt = (
            update(TicketOrder)
            .where(TicketOrder.id == order.id)
            .where(TicketOrder.payment_status == order.payment_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Order already processed")
        return self.refresh(order.id)

    def set_gateway_order(self, order_id: str, gateway_order_id: str) -> bool:
        stmt = (
            update(TicketOrder)
            .where(TicketOrder.id == order_id)
            .where(TicketOrder.payment_status == PaymentStatus.PENDING)
            .values(gateway_order_id=gateway_order_id)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def refresh(self, order_id: str) -> TicketOrder:
        stmt = (
            select(TicketOrder)
            .where(TicketOrder.id == order_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()
