import logging
import os
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from ticketing.api.errors import register_exception_handlers
from ticketing.api.routes import bookings, events, groups, realtime, tickets
from ticketing.infrastructure.db.session import Base, engine
from ticketing.infrastructure.realtime.fanout import BookingFanout
from ticketing.infrastructure.db import models  # noqa: F401

logger = logging.getLogger(__name__)


def _wait_for_db() -> None:
    # Handles the common case where the API starts before Postgres is ready.
    max_retries = int(os.getenv("DB_CONNECT_MAX_RETRIES", "30"))
    retry_delay_seconds = float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5"))

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def create_app(init_db: bool = True) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Ticketing Engine")
    app.state.fanout = BookingFanout()

    app.include_router(events.router)
    app.include_router(bookings.router)
    app.include_router(tickets.router)
    app.include_router(groups.router)
    app.include_router(groups.users_router)
    app.include_router(realtime.router)
    register_exception_handlers(app)

    if init_db:
        @app.on_event("startup")
        def on_startup() -> None:
            _wait_for_db()
            Base.metadata.create_all(bind=engine)

    return app


app = create_app()
