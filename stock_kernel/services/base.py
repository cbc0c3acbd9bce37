"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session contract.  Services persist through
    ``session.flush()`` and never call ``commit()`` or ``rollback()``; the
    orchestrator (or test harness) that opened the transaction owns it, so
    a delivery's header, lines, ledger rows and NCRs commit or vanish
    together.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        self.session = session
