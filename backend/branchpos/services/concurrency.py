# Overview: Retry and row-locking helpers shared by the transaction services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """Row lock via SELECT ... FOR UPDATE. SQLite ignores it."""
    return query.with_for_update()


def run_with_retry(func, *, rollback, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `rollback` is called before each retry.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Concurrent update conflict, retrying (attempt %d of %d): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
