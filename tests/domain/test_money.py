"""Tests for Decimal conversion and rounding helpers."""

from decimal import Decimal

import pytest

from billing_kernel.domain.money import round_money, round_whole, to_decimal


class TestToDecimal:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1180.00", Decimal("1180.00")),
            (" 12.5 ", Decimal("12.5")),
            (7, Decimal("7")),
            (0.1, Decimal("0.1")),
            (Decimal("3.14"), Decimal("3.14")),
        ],
    )
    def test_converts(self, value, expected):
        assert to_decimal(value) == expected

    def test_float_uses_shortest_repr(self):
        assert str(to_decimal(0.1)) == "0.1"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_none(self, value):
        assert to_decimal(value) is None

    @pytest.mark.parametrize("value", ["abc", True, [1], "NaN", "Infinity"])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(ValueError):
            to_decimal(value, field="amount")

    def test_error_names_field(self):
        with pytest.raises(ValueError, match="subtotal"):
            to_decimal("twelve", field="subtotal")


class TestRounding:

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1.005", "1.01"),
            ("1.004", "1.00"),
            ("-1.005", "-1.01"),
            ("10", "10.00"),
        ],
    )
    def test_round_money_half_up(self, value, expected):
        assert str(round_money(Decimal(value))) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [("90.5", "91"), ("90.49", "90"), ("-0.5", "-1"), ("94.5", "95")],
    )
    def test_round_whole(self, value, expected):
        assert str(round_whole(Decimal(value))) == expected
