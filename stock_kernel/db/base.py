"""
Module: stock_kernel.db.base
Responsibility: Declarative base classes for every ORM model in the stock
    ledger: UUID primary keys, the column type map, and the TrackedBase
    audit columns.
Architecture position: Kernel > DB.  Lowest-level import target in the
    kernel; MUST NOT import from models/, services/ or outer layers.

Invariants enforced:
    - Quantities, unit costs and values are Python Decimal mapped to
      Numeric(38, 9).  Nothing in the ledger is ever stored as float;
      rounding to 4 dp (qty, cost) and 2 dp (value) happens in code before
      the value reaches a column.
    - Every row gets a uuid4 primary key stored as a 36-character string,
      which behaves the same on PostgreSQL and SQLite.
    - TrackedBase rows always record who created them.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36); converted back to ``uuid.UUID`` on load."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Guarantees:
        - ``id`` is a uuid4 primary key.
        - Decimal -> Numeric(38, 9); datetime -> timezone-aware DateTime;
          UUID -> UUIDString; int -> BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with creation/modification timestamps and actors.

    ``updated_at`` and ``updated_by_id`` are audit metadata; the
    immutability listeners let them change even on posted documents.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
