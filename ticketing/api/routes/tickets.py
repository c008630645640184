from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ticketing.api.dependencies import get_db, get_effects, get_gateway
from ticketing.api.schemas.schemas import (
    CheckoutSessionResponse,
    CompleteOrderRequest,
    OrderCreateRequest,
    OrderItemResponse,
    OrderResponse,
    PaymentConfirmRequest,
    PaymentConfirmResponse,
    PlacedOrderResponse,
    TicketListResponse,
    TicketResponse,
    TicketsResponse,
    TicketValidationResponse,
)
from ticketing.application.effects import PostCommitEffects
from ticketing.application.order_service import OrderLine, OrderService
from ticketing.application.ticket_service import TicketService
from ticketing.domain.state_machine import TicketStatus
from ticketing.infrastructure.payments.razorpay_gateway import RazorpayGateway

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _tickets(tickets) -> list[TicketResponse]:
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.post("/orders", response_model=PlacedOrderResponse)
def create_order(request: OrderCreateRequest, db: Session = Depends(get_db)):
    placed = OrderService(db).create_order(
        user_id=request.user_id,
        event_id=request.event_id,
        lines=[OrderLine(tier_id=item.tier_id, quantity=item.quantity) for item in request.items],
    )
    return PlacedOrderResponse(
        order=OrderResponse.model_validate(placed.order),
        items=[OrderItemResponse.model_validate(item) for item in placed.items],
    )


@router.post("/orders/complete", response_model=TicketsResponse)
def complete_order(
    request: CompleteOrderRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    effects: PostCommitEffects = Depends(get_effects),
):
    service = OrderService(db, effects=effects, schedule=background_tasks.add_task)
    tickets = service.complete_order(request.order_id, request.payment_reference)
    return TicketsResponse(tickets=_tickets(tickets))


@router.post("/orders/{order_id}/payment", response_model=CheckoutSessionResponse)
def start_payment(
    order_id: str,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    session = OrderService(db, gateway=gateway).start_payment(order_id)
    return CheckoutSessionResponse(
        order_id=order_id,
        gateway_order_id=session.gateway_order_id,
        amount=session.amount,
        currency=session.currency,
        key_id=session.key_id,
    )


@router.post("/orders/{order_id}/payment/confirm", response_model=PaymentConfirmResponse)
def confirm_payment(
    order_id: str,
    request: PaymentConfirmRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    effects: PostCommitEffects = Depends(get_effects),
):
    service = OrderService(
        db,
        gateway=gateway,
        effects=effects,
        schedule=background_tasks.add_task,
    )
    result = service.confirm_payment(
        order_id,
        gateway_order_id=request.gateway_order_id,
        payment_id=request.payment_id,
        signature=request.signature,
    )
    return PaymentConfirmResponse(
        success=True,
        order_number=result.order.order_number,
        tickets=_tickets(result.tickets),
    )


@router.post("/orders/{order_id}/refund", response_model=OrderResponse)
def refund_order(order_id: str, db: Session = Depends(get_db)):
    order = OrderService(db).refund_order(order_id)
    return OrderResponse.model_validate(order)


@router.post("/validate/{qr_code}", response_model=TicketValidationResponse)
def validate_ticket(qr_code: str, db: Session = Depends(get_db)):
    outcome = TicketService(db).validate_ticket(qr_code)
    return TicketValidationResponse(
        ticket=TicketResponse.model_validate(outcome.ticket),
        is_valid=outcome.is_valid,
        message=outcome.message,
    )


@router.post("/{ticket_id}/cancel", response_model=TicketResponse)
def cancel_ticket(ticket_id: str, db: Session = Depends(get_db)):
    ticket = TicketService(db).cancel_ticket(ticket_id)
    return TicketResponse.model_validate(ticket)


@router.get("/users/{user_id}", response_model=TicketListResponse)
def list_user_tickets(
    user_id: str,
    status: TicketStatus | None = None,
    event_id: str | None = None,
    limit: int = Query(20),
    offset: int = Query(0),
    db: Session = Depends(get_db),
):
    tickets, total = TicketService(db).list_user_tickets(
        user_id,
        status=status,
        event_id=event_id,
        limit=limit,
        offset=offset,
    )
    return TicketListResponse(tickets=_tickets(tickets), total=total)
