"""
Tests for PeriodService: lifecycle transitions and the posting gate.

Covers:
- Creation, overlap and location enrolment
- DRAFT -> OPEN -> PENDING_CLOSE -> CLOSED, and the rejected moves
- Only one period OPEN or PENDING_CLOSE at a time
- require_postable for every status and the PENDING_CLOSE policy flag
- Location readiness
"""

from datetime import date

import pytest

from stock_kernel.domain.dtos import PeriodLocationStatus, PeriodStatus
from stock_kernel.exceptions import (
    InvalidPeriodTransitionError,
    NotAllLocationsReadyError,
    PeriodAlreadyClosedError,
    PeriodAlreadyOpenError,
    PeriodClosedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    ValidationError,
)
from stock_kernel.services.period_service import PeriodService


JANUARY = (date(2025, 1, 1), date(2025, 1, 31))
FEBRUARY = (date(2025, 2, 1), date(2025, 2, 28))


@pytest.fixture
def periods(kernel):
    return kernel.periods


class TestCreation:
    def test_new_period_is_draft_with_all_active_locations(self, periods, restaurant, admin):
        info = periods.create_period("2025-01", "January 2025", *JANUARY, admin.user_id)

        assert info.status == PeriodStatus.DRAFT
        assert not info.prices_locked
        rows = periods.get_period_locations(info.id)
        assert [r.location_code for r in rows] == ["KIT", "STR"]
        assert all(r.status == PeriodLocationStatus.OPEN for r in rows)

    def test_location_subset(self, periods, restaurant, admin):
        info = periods.create_period(
            "2025-01", "January 2025", *JANUARY, admin.user_id, location_ids=[restaurant.kitchen.id]
        )
        assert [r.location_code for r in periods.get_period_locations(info.id)] == ["KIT"]

    def test_add_location_later(self, periods, restaurant, admin):
        info = periods.create_period(
            "2025-01", "January 2025", *JANUARY, admin.user_id, location_ids=[restaurant.kitchen.id]
        )
        periods.add_location(info.id, restaurant.store.id, admin.user_id)
        assert len(periods.get_period_locations(info.id)) == 2

    def test_overlap_rejected(self, periods, restaurant, admin):
        periods.create_period("2025-01", "January 2025", *JANUARY, admin.user_id)
        with pytest.raises(PeriodOverlapError) as exc_info:
            periods.create_period("2025-01B", "Late January", date(2025, 1, 20), date(2025, 2, 10), admin.user_id)
        assert exc_info.value.existing_period_code == "2025-01"
        assert exc_info.value.overlap_start == "2025-01-20"
        assert exc_info.value.overlap_end == "2025-01-31"

    def test_start_after_end_rejected(self, periods, admin):
        with pytest.raises(ValidationError):
            periods.create_period("BAD", "Backwards", date(2025, 2, 1), date(2025, 1, 1), admin.user_id)

    def test_lookup_by_code_and_date(self, periods, restaurant, admin):
        info = periods.create_period("2025-01", "January 2025", *JANUARY, admin.user_id)
        assert periods.get_period_by_code("2025-01").id == info.id
        assert periods.get_period_for_date(date(2025, 1, 31)).id == info.id
        with pytest.raises(PeriodNotFoundError):
            periods.get_period_for_date(date(2025, 2, 1))


class TestTransitions:
    def test_open(self, periods, draft_period, admin, deterministic_clock):
        info = periods.open_period(draft_period.id, admin.user_id)

        assert info.status == PeriodStatus.OPEN
        assert info.prices_locked
        assert info.opened_at == deterministic_clock.now()
        assert periods.get_current_period().id == draft_period.id

    def test_cannot_open_twice(self, periods, open_period, admin):
        with pytest.raises(InvalidPeriodTransitionError):
            periods.open_period(open_period.id, admin.user_id)

    def test_only_one_open_period(self, periods, open_period, admin):
        february = periods.create_period("2025-02", "February 2025", *FEBRUARY, admin.user_id)
        with pytest.raises(PeriodAlreadyOpenError) as exc_info:
            periods.open_period(february.id, admin.user_id)
        assert exc_info.value.open_period_code == "2025-01"

    def test_draft_cannot_close(self, periods, draft_period, admin):
        period = periods.lock_period(draft_period.id)
        with pytest.raises(InvalidPeriodTransitionError):
            periods.mark_closed(period, admin.user_id)

    def test_pending_close_needs_all_locations_ready(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        periods.set_location_ready(period, restaurant.kitchen.id, True, admin.user_id)

        with pytest.raises(NotAllLocationsReadyError) as exc_info:
            periods.mark_pending_close(open_period.id, admin.user_id)
        assert exc_info.value.pending_locations == ("STR",)

    def test_full_lifecycle(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        for location in (restaurant.kitchen, restaurant.store):
            periods.set_location_ready(period, location.id, True, admin.user_id)
        assert periods.mark_pending_close(open_period.id, admin.user_id).status == PeriodStatus.PENDING_CLOSE

        closed = periods.mark_closed(periods.lock_period(open_period.id), admin.user_id)
        assert closed.status == PeriodStatus.CLOSED
        assert closed.closed_by_id == admin.user_id
        assert all(r.status == PeriodLocationStatus.CLOSED for r in periods.get_period_locations(open_period.id))

        with pytest.raises(PeriodAlreadyClosedError):
            periods.mark_closed(periods.lock_period(open_period.id), admin.user_id)

    def test_previous_closed_period(self, periods, open_period, restaurant, admin):
        assert periods.get_previous_closed_period(FEBRUARY[0]) is None
        period = periods.lock_period(open_period.id)
        for location in (restaurant.kitchen, restaurant.store):
            periods.set_location_ready(period, location.id, True, admin.user_id)
        periods.mark_closed(period, admin.user_id)

        assert periods.get_previous_closed_period(FEBRUARY[0]).period_code == "2025-01"


class TestPostingGate:
    def test_open_period_is_postable(self, periods, open_period):
        assert periods.require_postable(date(2025, 1, 15)).id == open_period.id
        assert periods.is_mutable(open_period.id)

    def test_draft_period_rejects_postings(self, periods, draft_period):
        with pytest.raises(PeriodClosedError) as exc_info:
            periods.require_postable(date(2025, 1, 15))
        assert exc_info.value.status == "DRAFT"

    def test_date_outside_any_period(self, periods, open_period):
        with pytest.raises(PeriodNotFoundError):
            periods.require_postable(date(2024, 12, 31))

    def test_closed_period_rejects_postings(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        for location in (restaurant.kitchen, restaurant.store):
            periods.set_location_ready(period, location.id, True, admin.user_id)
        periods.mark_closed(period, admin.user_id)

        with pytest.raises(PeriodClosedError) as exc_info:
            periods.require_postable(date(2025, 1, 15))
        assert exc_info.value.status == "CLOSED"
        assert not periods.is_mutable(open_period.id)

    def _pending_close(self, periods, period_id, restaurant, admin):
        period = periods.lock_period(period_id)
        for location in (restaurant.kitchen, restaurant.store):
            periods.set_location_ready(period, location.id, True, admin.user_id)
        periods.mark_pending_close(period_id, admin.user_id)

    def test_pending_close_is_postable_by_default(self, periods, open_period, restaurant, admin):
        self._pending_close(periods, open_period.id, restaurant, admin)
        assert periods.require_postable(date(2025, 1, 20)).status == PeriodStatus.PENDING_CLOSE

    def test_pending_close_blocked_by_policy(self, session, open_period, restaurant, admin, deterministic_clock):
        strict = PeriodService(session, deterministic_clock, block_posting_when_pending_close=True)
        self._pending_close(strict, open_period.id, restaurant, admin)
        with pytest.raises(PeriodClosedError):
            strict.require_postable(date(2025, 1, 20))

    def test_rejection_is_logged(self, periods, draft_period, captured_logs):
        with pytest.raises(PeriodClosedError):
            periods.require_postable(date(2025, 1, 15))
        record = [r for r in captured_logs() if r["message"] == "posting_rejected_period_not_open"][-1]
        assert record["level"] == "WARNING"
        assert record["period_code"] == "2025-01"


class TestReadiness:
    def test_mark_ready_is_idempotent(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        first = periods.set_location_ready(period, restaurant.kitchen.id, True, admin.user_id)
        second = periods.set_location_ready(period, restaurant.kitchen.id, True, admin.user_id)
        assert first.status == second.status == PeriodLocationStatus.READY
        assert periods.pending_locations(period) == ["STR"]

    def test_unready(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        periods.set_location_ready(period, restaurant.kitchen.id, True, admin.user_id)
        info = periods.set_location_ready(period, restaurant.kitchen.id, False, admin.user_id)
        assert info.status == PeriodLocationStatus.OPEN
        assert info.ready_at is None

    def test_readiness_frozen_after_pending_close(self, periods, open_period, restaurant, admin):
        period = periods.lock_period(open_period.id)
        for location in (restaurant.kitchen, restaurant.store):
            periods.set_location_ready(period, location.id, True, admin.user_id)
        periods.mark_pending_close(open_period.id, admin.user_id)

        with pytest.raises(InvalidPeriodTransitionError):
            periods.set_location_ready(periods.lock_period(open_period.id), restaurant.kitchen.id, False, admin.user_id)
