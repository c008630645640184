# ticketing/infrastructure/repositories/ticket_repository.py

from datetime import datetime, timezone

from sqlalchemy.orm import Session
from sqlalchemy import func, select, update

from ticketing.infrastructure.db.models import OrderItem, Ticket, TicketOrder
from ticketing.domain.codes import new_scan_code, new_ticket_number
from ticketing.domain.exceptions import FailedPreconditionError
from ticketing.domain.state_machine import TicketStateMachine, TicketStatus


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_qr_code(self, qr_code: str) -> Ticket | None:
        stmt = (
            select(Ticket)
            .where(Ticket.qr_code == qr_code)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_order(self, order_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.order_id == order_id)
            .order_by(Ticket.order_item_id, Ticket.unit_index)
        )
        return list(self.db.execute(stmt).scalars().all())

    def minted_units(self, order_item_id: str) -> set[int]:
        stmt = select(Ticket.unit_index).where(Ticket.order_item_id == order_item_id)
        return set(self.db.execute(stmt).scalars().all())

    def mint(self, order: TicketOrder, item: OrderItem, unit_index: int) -> Ticket:
        ticket = Ticket(
            event_id=order.event_id,
            tier_id=item.tier_id,
            order_id=order.id,
            order_item_id=item.id,
            unit_index=unit_index,
            user_id=order.user_id,
            ticket_number=new_ticket_number(),
            qr_code=new_scan_code(),
            status=TicketStatus.ACTIVE,
            purchase_price=item.unit_price,
        )
        self.db.add(ticket)
        return ticket

    def mark_used(self, qr_code: str) -> Ticket | None:
        """
        Atomic active -> used. None means the ticket is missing
        or something else already moved it out of active.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.qr_code == qr_code)
            .where(Ticket.status == TicketStatus.ACTIVE)
            .values(status=TicketStatus.USED, used_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            return None
        return self.get_by_qr_code(qr_code)

    def list_for_user(
        self,
        user_id: str,
        status: TicketStatus | None = None,
        event_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Ticket], int]:
        filters = [Ticket.user_id == user_id]
        if status is not None:
            filters.append(Ticket.status == status)
        if event_id is not None:
            filters.append(Ticket.event_id == event_id)

        total = self.db.execute(
            select(func.count()).select_from(Ticket).where(*filters)
        ).scalar_one()

        stmt = (
            select(Ticket)
            .where(*filters)
            .order_by(Ticket.created_at.desc(), Ticket.ticket_number.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.db.execute(stmt).scalars().all()), total

    def transition(self, ticket: Ticket, new_status: TicketStatus) -> Ticket:
        TicketStateMachine.validate_transition(ticket.status, new_status)

        stmt = (
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .where(Ticket.status == ticket.status)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if self.db.execute(stmt).rowcount != 1:
            raise FailedPreconditionError("Ticket was modified concurrently")

        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket.id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one()
