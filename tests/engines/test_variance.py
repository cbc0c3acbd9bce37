"""
Tests for the price variance detector.

Covers:
- Exact match and missing period price (no variance)
- Increases and decreases, percent and total impact
- Zero period price
- Percent and amount thresholds (strictly greater-than)
- NCR reason text
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_engines.variance import VarianceDetector, build_ncr_reason


class TestDetection:
    def setup_method(self):
        self.detector = VarianceDetector()
        self.item_id = uuid4()
        self.period_id = uuid4()

    def _detect(self, qty, actual, expected):
        return self.detector.detect(
            item_id=self.item_id,
            period_id=self.period_id,
            quantity=Decimal(qty),
            actual_unit_price=Decimal(actual),
            period_price=None if expected is None else Decimal(expected),
        )

    def test_no_period_price_means_no_variance(self):
        assert self._detect("10", "6.00", None) is None

    def test_exact_match_means_no_variance(self):
        assert self._detect("10", "5.00", "5.0000") is None

    def test_increase(self):
        result = self._detect("10", "6.00", "5.00")

        assert result is not None
        assert result.absolute_delta == Decimal("1.0000")
        assert result.percent_delta == Decimal("20.00")
        assert result.total_impact == Decimal("10.00")
        assert result.ncr_value == Decimal("10.00")
        assert result.is_increase
        assert result.direction == "increase"

    def test_decrease(self):
        result = self._detect("4", "4.50", "5.00")

        assert result.absolute_delta == Decimal("-0.5000")
        assert result.percent_delta == Decimal("-10.00")
        assert result.total_impact == Decimal("-2.00")
        assert result.ncr_value == Decimal("2.00")
        assert result.direction == "decrease"

    def test_zero_period_price_reports_hundred_percent(self):
        result = self._detect("3", "2.00", "0")
        assert result.percent_delta == Decimal("100.00")
        assert result.total_impact == Decimal("6.00")

    def test_result_keeps_inputs(self):
        result = self._detect("2", "7.1234", "7")
        assert result.item_id == self.item_id
        assert result.period_id == self.period_id
        assert result.quantity == Decimal("2")
        assert result.period_price == Decimal("7")
        assert result.actual_price == Decimal("7.1234")

    def test_rejects_non_positive_quantity(self):
        with pytest.raises(ValueError):
            self._detect("0", "6.00", "5.00")

    def test_rejects_negative_price(self):
        with pytest.raises(ValueError):
            self._detect("1", "-1", "5.00")


class TestThresholds:
    item_id = uuid4()
    period_id = uuid4()

    def _detect(self, detector, qty, actual, expected):
        return detector.detect(self.item_id, self.period_id, Decimal(qty), Decimal(actual), Decimal(expected))

    def test_percent_threshold_suppresses_small_variance(self):
        detector = VarianceDetector(threshold_percent=Decimal("5"))
        assert self._detect(detector, "100", "5.20", "5.00") is None  # 4%
        assert self._detect(detector, "100", "5.25", "5.00") is None  # exactly 5%, not greater
        assert self._detect(detector, "100", "5.30", "5.00") is not None  # 6%

    def test_amount_threshold(self):
        detector = VarianceDetector(threshold_amount=Decimal("10"))
        assert self._detect(detector, "10", "6.00", "5.00") is None  # impact exactly 10
        assert self._detect(detector, "11", "6.00", "5.00") is not None

    def test_either_threshold_triggers(self):
        detector = VarianceDetector(threshold_percent=Decimal("50"), threshold_amount=Decimal("100"))
        # 20% but impact 200
        assert self._detect(detector, "200", "6.00", "5.00") is not None
        # 60% on a tiny quantity
        assert self._detect(detector, "1", "8.00", "5.00") is not None
        # neither
        assert self._detect(detector, "1", "6.00", "5.00") is None

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            VarianceDetector(threshold_percent=Decimal("-1"))


class TestNcrReason:
    def test_reason_text(self):
        result = VarianceDetector().detect(uuid4(), uuid4(), Decimal("10"), Decimal("6.00"), Decimal("5.00"))
        reason = build_ncr_reason(result, item_name="Flour 25kg", item_code="FLOUR", currency="SAR")

        assert "Flour 25kg (FLOUR)" in reason
        assert "Expected Price (Period): SAR 5.0000" in reason
        assert "Actual Price (Delivery): SAR 6.0000" in reason
        assert "Variance: SAR 1.0000 (20.00% increase)" in reason
        assert "Total Variance Amount: SAR 10.00" in reason
