import logging
import os
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TX_MAX_ATTEMPTS = int(os.getenv("TX_MAX_ATTEMPTS", "3"))
TX_RETRY_BACKOFF = float(os.getenv("TX_RETRY_BACKOFF", "0.05"))

T = TypeVar("T")


def run_atomic(
    db: Session,
    work: Callable[[], T],
    retry_on: tuple[type[BaseException], ...] = (OperationalError,),
    max_attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """
    Run ``work`` as one all-or-nothing unit: commit on success,
    roll back on any error. Lock timeouts and other retryable
    failures are retried a bounded number of times with linear
    backoff; ``work`` must therefore be safe to run again from scratch.
    """
    attempts = max_attempts or TX_MAX_ATTEMPTS
    delay = TX_RETRY_BACKOFF if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.commit()
            return result
        except retry_on as exc:
            db.rollback()
            if attempt == attempts:
                logger.error(
                    "Transaction failed after %s attempts: %s",
                    attempts,
                    exc.__class__.__name__,
                )
                raise
            logger.warning(
                "Transaction attempt %s/%s failed (%s). Retrying in %.2f seconds...",
                attempt,
                attempts,
                exc.__class__.__name__,
                delay * attempt,
            )
            time.sleep(delay * attempt)
        except Exception:
            db.rollback()
            raise

    raise RuntimeError("unreachable")
