"""Decimal coercion and rounding policy."""

from decimal import Decimal

import pytest

from stock_kernel.domain.values import line_value, round_cost, round_quantity, round_value, to_decimal


class TestToDecimal:
    @pytest.mark.parametrize("raw, expected", [(5, Decimal("5")), ("5.25", Decimal("5.25")), (Decimal("1.1"), Decimal("1.1"))])
    def test_accepts_int_str_decimal(self, raw, expected):
        assert to_decimal(raw) == expected

    def test_rejects_float(self):
        with pytest.raises(TypeError, match="float"):
            to_decimal(0.1, "price")

    def test_rejects_bool(self):
        with pytest.raises(TypeError):
            to_decimal(True)

    @pytest.mark.parametrize("raw", ["abc", "NaN", "Infinity"])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValueError):
            to_decimal(raw, "quantity")


class TestRounding:
    def test_half_up_not_bankers(self):
        assert round_value(Decimal("2.345")) == Decimal("2.35")
        assert round_value(Decimal("2.335")) == Decimal("2.34")
        assert round_cost(Decimal("1.00005")) == Decimal("1.0001")
        assert round_quantity(Decimal("0.00005")) == Decimal("0.0001")

    def test_negative_half_rounds_away_from_zero(self):
        assert round_value(Decimal("-2.345")) == Decimal("-2.35")

    def test_line_value(self):
        assert line_value(Decimal("3"), Decimal("5.3333")) == Decimal("16.00")
        assert line_value(Decimal("20"), Decimal("5.3333")) == Decimal("106.67")
