"""
Transient database failure translation and whole-call retry.

Responsibility:
    Recognises the database errors that mean "another transaction got in
    the way" (deadlock, serialization failure, lock or statement timeout,
    stale version counter) and raises them as ConcurrencyConflictError, and
    re-runs an entire orchestrator call when that happens.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    ``translate_concurrency_errors`` wraps each orchestrator transaction;
    ``run_with_retry`` wraps the orchestrator call from outside.

Invariants enforced:
    - Only transient failures become retryable; every other error passes
      through unchanged.
    - A retry always starts from scratch: the failed transaction has been
      rolled back by the orchestrator before the error leaves it.

Failure modes:
    - ConcurrencyConflictError after the last attempt fails.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.exceptions import ConcurrencyConflictError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

# PostgreSQL SQLSTATEs that abort a transaction without it being at fault
TRANSIENT_SQLSTATES: dict[str, str] = {
    "40P01": "deadlock detected",
    "40001": "serialization failure",
    "55P03": "lock not available",
    "57014": "statement timeout",
}

DEFAULT_ATTEMPTS = 3


def transient_reason(exc: BaseException) -> str | None:
    """Why ``exc`` is a transient concurrency failure, or None if it is not one."""
    if isinstance(exc, StaleDataError):
        return "ledger row changed by another transaction"
    if isinstance(exc, DBAPIError):
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode in TRANSIENT_SQLSTATES:
            return TRANSIENT_SQLSTATES[pgcode]
        if isinstance(exc, OperationalError):
            text = str(exc.orig).lower()
            if "deadlock" in text or "database is locked" in text or "lock timeout" in text:
                return text.splitlines()[0]
    return None


@contextmanager
def translate_concurrency_errors(operation: str) -> Iterator[None]:
    """Re-raise transient database failures as ConcurrencyConflictError."""
    try:
        yield
    except (StaleDataError, DBAPIError) as exc:
        reason = transient_reason(exc)
        if reason is None:
            raise
        logger.warning(
            "concurrency_conflict",
            extra={"operation": operation, "reason": reason},
        )
        raise ConcurrencyConflictError(operation, reason, retryable=True) from exc


def run_with_retry(
    fn: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    operation: str | None = None,
    backoff_seconds: float = 0.05,
) -> T:
    """
    Call ``fn`` until it succeeds or ``attempts`` retryable conflicts occur.

    ``fn`` must run a complete orchestrator call (its own transaction),
    so every attempt starts from committed state.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1: {attempts}")

    name = operation or getattr(fn, "__qualname__", repr(fn))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyConflictError as exc:
            if not exc.retryable or attempt == attempts:
                logger.error(
                    "concurrency_retry_exhausted",
                    extra={"operation": name, "attempts": attempt, "reason": exc.reason},
                )
                raise
            logger.warning(
                "concurrency_retry",
                extra={"operation": name, "attempt": attempt, "reason": exc.reason},
            )
            time.sleep(backoff_seconds * attempt)
    raise AssertionError("unreachable")
