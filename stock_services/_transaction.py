"""
Transaction boundary shared by the orchestrators.

Kernel services only flush.  Each orchestrator call wraps its work in
``atomic``: the session commits when the block finishes and rolls back on
any exception, and transient database failures surface as
ConcurrencyConflictError so the caller can retry the whole call.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from stock_kernel.services.retry_service import translate_concurrency_errors


@contextmanager
def atomic(session: Session, operation: str) -> Iterator[Session]:
    try:
        with translate_concurrency_errors(operation):
            yield session
            session.commit()
    except Exception:
        session.rollback()
        raise
