"""
PriceBookService -- per-period expected item prices.

Responsibility:
    Upserts the expected unit price of an item for a period while that
    period is still DRAFT, and serves those prices as the read-only baseline
    for variance detection once the period is OPEN.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - A price can be written only while its period is DRAFT; from OPEN
      onwards the stored price never changes (PriceLockedError).
    - Prices are non-negative Decimals at cost precision.
    - The period row is share-locked during the write, so a price update
      cannot interleave with the period being opened.

Failure modes:
    - PriceLockedError: period not DRAFT.
    - ValidationError: negative price.
    - EntityNotFoundError: unknown period or item.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import PeriodStatus
from stock_kernel.domain.values import round_cost, to_decimal
from stock_kernel.exceptions import EntityNotFoundError, PriceLockedError, ValidationError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.master_data import Item
from stock_kernel.models.period import Period
from stock_kernel.models.price_point import PricePoint
from stock_kernel.services.base import BaseService

logger = get_logger("services.price_book")

DEFAULT_CURRENCY = "SAR"


class PriceBookService(BaseService[PricePoint]):
    """
    Service for period price points.

    Non-goals:
        - Does NOT detect variances (stock_engines.variance).
        - Does NOT handle currencies beyond storing the code.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_currency: str = DEFAULT_CURRENCY,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._default_currency = default_currency

    def _share_lock_period(self, period_id: UUID) -> Period:
        period = self.session.execute(
            select(Period)
            .where(Period.id == period_id)
            .with_for_update(read=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise EntityNotFoundError("Period", str(period_id))
        return period

    def _find(self, item_id: UUID, period_id: UUID) -> PricePoint | None:
        return self.session.execute(
            select(PricePoint).where(
                PricePoint.period_id == period_id,
                PricePoint.item_id == item_id,
            )
        ).scalar_one_or_none()

    def set_price(
        self,
        item_id: UUID,
        period_id: UUID,
        price: Decimal | int | str,
        actor_id: UUID,
        currency: str | None = None,
    ) -> Decimal:
        """
        Insert or update the expected price of ``item_id`` in a DRAFT period.

        ``currency`` defaults to the service's configured currency.

        Returns:
            The stored price, rounded to cost precision.

        Raises:
            PriceLockedError: The period is OPEN or later.
            ValidationError: Negative price.
        """
        amount = to_decimal(price, "price")
        if amount < 0:
            raise ValidationError(
                f"Price cannot be negative: {amount}",
                field="price",
                value=str(amount),
            )
        amount = round_cost(amount)
        currency = currency or self._default_currency

        period = self._share_lock_period(period_id)
        if period.status != PeriodStatus.DRAFT.value:
            logger.warning(
                "price_update_rejected_locked",
                extra={
                    "item_id": str(item_id),
                    "period_code": period.period_code,
                    "status": period.status,
                },
            )
            raise PriceLockedError(str(item_id), period.period_code, period.status)

        if self.session.get(Item, item_id) is None:
            raise EntityNotFoundError("Item", str(item_id))

        now = self._clock.now()
        point = self._find(item_id, period_id)
        if point is None:
            point = PricePoint(
                period_id=period_id,
                item_id=item_id,
                price=amount,
                currency=currency,
                set_by_id=actor_id,
                set_at=now,
                created_by_id=actor_id,
            )
            self.session.add(point)
        else:
            point.price = amount
            point.currency = currency
            point.set_by_id = actor_id
            point.set_at = now
            point.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "price_set",
            extra={
                "item_id": str(item_id),
                "period_code": period.period_code,
                "price": str(amount),
                "currency": currency,
            },
        )
        return amount

    def get_price(self, item_id: UUID, period_id: UUID) -> Decimal | None:
        """Expected price of the item in the period, or None if never set."""
        point = self._find(item_id, period_id)
        return point.price if point is not None else None

    def get_prices(self, period_id: UUID) -> dict[UUID, Decimal]:
        points = self.session.execute(
            select(PricePoint).where(PricePoint.period_id == period_id)
        ).scalars()
        return {p.item_id: p.price for p in points}

    def copy_prices(self, source_period_id: UUID, target_period_id: UUID, actor_id: UUID) -> int:
        """
        Copy every price of active items from one period into a DRAFT period.

        Prices already present in the target are overwritten.

        Returns:
            Number of prices copied.
        """
        rows = self.session.execute(
            select(PricePoint, Item.is_active)
            .join(Item, Item.id == PricePoint.item_id)
            .where(PricePoint.period_id == source_period_id)
        ).all()

        copied = 0
        for point, is_active in rows:
            if not is_active:
                continue
            self.set_price(point.item_id, target_period_id, point.price, actor_id, point.currency)
            copied += 1

        logger.info(
            "prices_copied",
            extra={
                "source_period_id": str(source_period_id),
                "target_period_id": str(target_period_id),
                "count": copied,
            },
        )
        return copied
