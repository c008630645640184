import logging
from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from ticketing.domain.exceptions import TicketingError
from ticketing.infrastructure.payments.razorpay_gateway import PaymentGatewayError

logger = logging.getLogger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


async def ticketing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, TicketingError) else TicketingError(str(exc))
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


async def payment_gateway_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Payment gateway unavailable: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    TicketingError: ticketing_error_handler,
    PaymentGatewayError: payment_gateway_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
