import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ticketing.application.transaction import run_atomic
from ticketing.domain.exceptions import NotFoundError
from ticketing.domain.state_machine import TicketStatus
from ticketing.infrastructure.db.models import Ticket
from ticketing.infrastructure.repositories.audit_repository import AuditRepository
from ticketing.infrastructure.repositories.capacity_ledger import CapacityLedger
from ticketing.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

_REJECTION_MESSAGES = {
    TicketStatus.USED: "Ticket has already been used",
    TicketStatus.CANCELLED: "Ticket is cancelled",
    TicketStatus.REFUNDED: "Ticket is refunded",
}


@dataclass(frozen=True)
class ValidationOutcome:
    ticket: Ticket
    is_valid: bool
    message: str


class TicketService:

    def __init__(self, db: Session):
        self.db = db
        self.ticket_repository = TicketRepository(db)
        self.ledger = CapacityLedger(db)
        self.audit = AuditRepository(db)

    def validate_ticket(self, qr_code: str) -> ValidationOutcome:
        """
        Consume a ticket at the door. The active -> used step is a
        single conditional update, so a scan code admits exactly once
        however many scanners race on it.
        """

        def work() -> ValidationOutcome:
            ticket = self.ticket_repository.mark_used(qr_code)
            if ticket is not None:
                return ValidationOutcome(ticket, True, "Ticket validated successfully")

            ticket = self.ticket_repository.get_by_qr_code(qr_code)
            if ticket is None:
                raise NotFoundError("Ticket not found")
            message = _REJECTION_MESSAGES.get(ticket.status, "Ticket is not valid")
            return ValidationOutcome(ticket, False, message)

        outcome = run_atomic(self.db, work)
        logger.info(
            "Ticket scanned. ticket_number=%s valid=%s",
            outcome.ticket.ticket_number,
            outcome.is_valid,
        )
        return outcome

    def cancel_ticket(self, ticket_id: str) -> Ticket:
        def work() -> Ticket:
            ticket = self.ticket_repository.get_by_id(ticket_id)
            if ticket is None:
                raise NotFoundError("Ticket not found")

            ticket = self.ticket_repository.transition(ticket, TicketStatus.CANCELLED)
            self.ledger.release(ticket.tier_id, 1)
            self.audit.log_action(
                action="ticket.cancel",
                resource_type="ticket",
                resource_id=ticket.id,
                old_values={"status": TicketStatus.ACTIVE.value},
                new_values={"status": ticket.status.value},
                user_id=ticket.user_id,
            )
            return ticket

        ticket = run_atomic(self.db, work)
        logger.info("Ticket cancelled. ticket_number=%s", ticket.ticket_number)
        return ticket

    def list_user_tickets(
        self,
        user_id: str,
        status: TicketStatus | None = None,
        event_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Ticket], int]:
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        offset = max(offset, 0)
        return self.ticket_repository.list_for_user(
            user_id,
            status=status,
            event_id=event_id,
            limit=limit,
            offset=offset,
        )
