"""
Period close and roll-forward across all locations.

Covers:
- Close is refused until every location is READY
- The last READY moves the period to PENDING_CLOSE
- One snapshot per ledger row, zero rows included
- Closing values per location
- The next month opens with the snapshots carried forward and prices copied
- Postings against a closed period fail
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from stock_kernel.domain.dtos import PeriodLocationStatus, PeriodStatus
from stock_kernel.exceptions import (
    InvalidPeriodTransitionError,
    NotAllLocationsReadyError,
    PeriodAlreadyClosedError,
    PeriodAlreadyOpenError,
    PeriodClosedError,
)
from stock_kernel.models.stock_ledger import PeriodSnapshot
from stock_services import KernelServices, PeriodCloseCoordinator
from stock_services.period_close_coordinator import next_month_bounds


@pytest.fixture
def january_stock(deliver, issue, open_period, restaurant):
    deliver(restaurant.kitchen, restaurant.flour, "100", "5.00")
    deliver(restaurant.kitchen, restaurant.flour, "50", "6.00")
    issue(restaurant.kitchen, restaurant.flour, "60")
    deliver(restaurant.store, restaurant.oil, "10", "8.00")
    # Oil issued to zero: the row stays and is snapshotted
    issue(restaurant.store, restaurant.oil, "10")


def _ready_all(coordinator, admin, period_id, restaurant):
    for location in (restaurant.kitchen, restaurant.store):
        coordinator.mark_location_ready(admin, period_id, location.id)


class TestNextMonthBounds:
    @pytest.mark.parametrize(
        "end, expected",
        [
            (date(2025, 1, 31), (date(2025, 2, 1), date(2025, 2, 28))),
            (date(2024, 1, 31), (date(2024, 2, 1), date(2024, 2, 29))),
            (date(2025, 12, 31), (date(2026, 1, 1), date(2026, 1, 31))),
        ],
    )
    def test_bounds(self, end, expected):
        assert next_month_bounds(end) == expected


class TestReadiness:
    def test_close_refused_until_all_ready(self, coordinator, admin, open_period, restaurant, kernel):
        coordinator.mark_location_ready(admin, open_period.id, restaurant.kitchen.id)

        with pytest.raises(NotAllLocationsReadyError) as exc_info:
            coordinator.close_period(admin, open_period.id)

        assert exc_info.value.pending_locations == ("STR",)
        assert kernel.periods.get_period(open_period.id).status == PeriodStatus.OPEN

    def test_last_ready_moves_to_pending_close(self, coordinator, admin, open_period, restaurant, kernel):
        coordinator.mark_location_ready(admin, open_period.id, restaurant.kitchen.id)
        assert kernel.periods.get_period(open_period.id).status == PeriodStatus.OPEN

        info = coordinator.mark_location_ready(admin, open_period.id, restaurant.store.id)

        assert info.status == PeriodLocationStatus.READY
        assert kernel.periods.get_period(open_period.id).status == PeriodStatus.PENDING_CLOSE

    def test_unready_before_pending_close(self, coordinator, admin, open_period, restaurant):
        coordinator.mark_location_ready(admin, open_period.id, restaurant.kitchen.id)
        info = coordinator.mark_location_unready(admin, open_period.id, restaurant.kitchen.id)
        assert info.status == PeriodLocationStatus.OPEN

    def test_request_close_requires_readiness(self, coordinator, admin, open_period, restaurant):
        with pytest.raises(NotAllLocationsReadyError) as exc_info:
            coordinator.request_close(admin, open_period.id)
        assert exc_info.value.pending_locations == ("KIT", "STR")

    def test_request_close_when_already_pending(self, coordinator, admin, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        info = coordinator.request_close(admin, open_period.id)
        assert info.status == PeriodStatus.PENDING_CLOSE

    def test_postings_continue_in_pending_close(self, coordinator, deliver, admin, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        result = deliver(restaurant.kitchen, restaurant.flour, "1", "5.00", on=date(2025, 1, 30))
        assert result.delivery.period_id == open_period.id


class TestClose:
    def test_close_snapshots_every_row(self, session, coordinator, admin, january_stock, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        result = coordinator.close_period(admin, open_period.id)

        assert result.period.status == PeriodStatus.CLOSED
        assert result.snapshot_count == 2

        snapshots = {
            s.location_id: s
            for s in session.execute(
                select(PeriodSnapshot).where(PeriodSnapshot.period_id == open_period.id)
            ).scalars()
        }
        kitchen = snapshots[restaurant.kitchen.id]
        assert (kitchen.on_hand, kitchen.wac, kitchen.value) == (Decimal("90"), Decimal("5.3333"), Decimal("480.00"))
        store = snapshots[restaurant.store.id]
        assert (store.on_hand, store.wac, store.value) == (Decimal("0"), Decimal("8.00"), Decimal("0"))

    def test_closing_values(self, coordinator, admin, january_stock, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        result = coordinator.close_period(admin, open_period.id)

        assert result.closing_values == {"KIT": Decimal("480.00"), "STR": Decimal("0.00")}
        assert result.total_value == Decimal("480.00")

    def test_close_logged(self, coordinator, admin, january_stock, open_period, restaurant, captured_logs):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        coordinator.close_period(admin, open_period.id)

        record = next(r for r in captured_logs() if r["message"] == "period_closed")
        assert record["snapshot_count"] == 2
        assert record["total_value"] == "480.00"
        assert record["next_period_code"] == "2025-02"

    def test_postings_refused_after_close(self, coordinator, deliver, issue, admin, january_stock, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        coordinator.close_period(admin, open_period.id)

        with pytest.raises(PeriodClosedError):
            deliver(restaurant.kitchen, restaurant.flour, "1", "5.00", on=date(2025, 1, 20))
        with pytest.raises(PeriodClosedError):
            issue(restaurant.kitchen, restaurant.flour, "1", on=date(2025, 1, 20))

    def test_close_twice(self, coordinator, admin, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        coordinator.close_period(admin, open_period.id)
        with pytest.raises(PeriodAlreadyClosedError):
            coordinator.close_period(admin, open_period.id)

    def test_draft_cannot_close(self, coordinator, admin, draft_period):
        with pytest.raises(InvalidPeriodTransitionError):
            coordinator.close_period(admin, draft_period.id)


class TestRollForward:
    def test_next_period_opened_with_carry_forward(
        self, coordinator, kernel, admin, january_stock, open_period, restaurant, position
    ):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        result = coordinator.close_period(admin, open_period.id)

        february = result.next_period
        assert february.period_code == "2025-02"
        assert february.name == "February 2025"
        assert february.status == PeriodStatus.OPEN
        assert (february.start_date, february.end_date) == (date(2025, 2, 1), date(2025, 2, 28))
        assert result.carried_forward_count == 2

        kitchen = position(february, restaurant.kitchen, restaurant.flour)
        assert (kitchen.on_hand, kitchen.wac) == (Decimal("90"), Decimal("5.3333"))
        store = position(february, restaurant.store, restaurant.oil)
        assert (store.on_hand, store.wac) == (Decimal("0"), Decimal("8.00"))

        openings = {r.location_code: r.opening_value for r in kernel.periods.get_period_locations(february.id)}
        assert openings == {"KIT": Decimal("480.00"), "STR": Decimal("0.00")}

    def test_prices_copied(self, coordinator, kernel, admin, open_period, restaurant):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        february = coordinator.close_period(admin, open_period.id).next_period

        assert kernel.prices.get_prices(february.id) == {
            restaurant.flour.id: Decimal("5.00"),
            restaurant.oil.id: Decimal("8.00"),
        }

    def test_next_month_postings_blend_with_carried_stock(
        self, coordinator, deliver, admin, january_stock, open_period, restaurant, position
    ):
        _ready_all(coordinator, admin, open_period.id, restaurant)
        february = coordinator.close_period(admin, open_period.id).next_period

        deliver(restaurant.kitchen, restaurant.flour, "10", "5.00", on=date(2025, 2, 3))

        entry = position(february, restaurant.kitchen, restaurant.flour)
        # (90 x 5.3333 + 10 x 5.00) / 100
        assert entry.on_hand == Decimal("100")
        assert entry.wac == Decimal("5.3000")
        january = position(open_period, restaurant.kitchen, restaurant.flour)
        assert january.on_hand == Decimal("90")

    def test_manual_roll_forward_without_auto_open(
        self, session, deterministic_clock, config, admin, january_stock, open_period, restaurant, position
    ):
        manual = replace(config, open_next_period_on_close=False, copy_prices_on_roll_forward=False)
        coordinator = PeriodCloseCoordinator(session, kernel=KernelServices(session, deterministic_clock, manual))
        _ready_all(coordinator, admin, open_period.id, restaurant)

        result = coordinator.close_period(admin, open_period.id)
        assert result.next_period is None

        draft = coordinator.roll_forward(admin, open_period.id)
        assert draft.status == PeriodStatus.DRAFT
        assert coordinator.roll_forward(admin, open_period.id).id == draft.id

        opened = coordinator.open_period(admin, draft.id)
        assert opened.carried_forward_count == 2
        assert opened.opening_values == {"KIT": Decimal("480.00"), "STR": Decimal("0.00")}
        assert position(opened.period, restaurant.kitchen, restaurant.flour).wac == Decimal("5.3333")

    def test_existing_next_period_is_reused(self, coordinator, kernel, admin, open_period, restaurant):
        existing = coordinator.create_period(admin, "FEB-25", "Feb", date(2025, 2, 1), date(2025, 2, 28))
        _ready_all(coordinator, admin, open_period.id, restaurant)

        result = coordinator.close_period(admin, open_period.id)

        assert result.next_period.id == existing.id
        assert result.next_period.status == PeriodStatus.OPEN

    def test_cannot_open_while_another_is_current(self, coordinator, admin, open_period):
        february = coordinator.create_period(admin, "2025-02", "February 2025", date(2025, 2, 1), date(2025, 2, 28))
        with pytest.raises(PeriodAlreadyOpenError):
            coordinator.open_period(admin, february.id)
