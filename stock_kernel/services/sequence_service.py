"""
SequenceService -- document numbers from locked counter rows.

Responsibility:
    Hands out gap-safe, strictly increasing numbers per named sequence and
    formats them as document numbers: ``DEL-2025-001``, ``ISS-2025-014``,
    ``TRF-2025-003``, ``NCR-2025-007``.  Each document type and year has its
    own counter row (``DEL-2025``), locked with ``SELECT ... FOR UPDATE``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by the
    orchestrators inside their transaction.

Invariants enforced:
    - Counting never uses ``max(number) + 1``; the locked counter row is the
      only source of the next value.
    - The increment commits with the caller's transaction; a rollback gives
      the number back.

Failure modes:
    - IntegrityError when two transactions create the same counter row at
      once: the loser rolls back its savepoint and locks the winner's row.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per named sequence, e.g. ``DEL-2025``."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    DELIVERY = "DEL"
    ISSUE = "ISS"
    TRANSFER = "TRF"
    NCR = "NCR"

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Returns:
            The next value (always > 0).
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(self, prefix: str, year: int) -> str:
        """Allocate the next ``PREFIX-YYYY-NNN`` number (NNN widens past 999)."""
        value = self.next_value(f"{prefix}-{year}")
        return f"{prefix}-{year}-{value:03d}"

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
