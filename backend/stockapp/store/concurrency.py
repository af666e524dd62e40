# Overview: Bounded retry for store transactions; shared by every backend.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from .base import TransactionConflictError

logger = logging.getLogger(__name__)

# Failures that mean "another writer got there first": re-running is safe.
CONFLICT_ERRORS = (TransactionConflictError, OperationalError, StaleDataError, IntegrityError)


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple = CONFLICT_ERRORS,
    on_retry=None,
):
    """
    Execute an operation with retry on concurrency-related failures.

    on_retry(exc) runs after every failed attempt (e.g. to roll back a
    session) before sleeping. Once attempts are exhausted the failure is
    raised as TransactionConflictError, chained to the last cause.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if on_retry is not None:
                on_retry(exc)
            last_exc = exc
            if attempt >= attempts - 1:
                break
            logger.debug("transaction attempt %d/%d conflicted: %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))

    raise TransactionConflictError(
        f"Transaction failed after {attempts} attempts: {last_exc}"
    ) from last_exc
