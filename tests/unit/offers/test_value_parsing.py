"""Tests for locale-tolerant number parsing."""

import math

import pytest

from offer_ingest.services.offers.value_parsing import parse_number_value


class TestParseNumberValue:
    """Amounts as written in Polish offers."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1 234,56", 1234.56),
            ("1.234,56", 1234.56),
            ("1,234.56", 1234.56),
            ("123,45 zł", 123.45),
            ("100 000 zł", 100000.0),
            ("PLN 45.50", 45.5),
            ("-50", -50.0),
            ("0", 0.0),
            (0, 0.0),
            (12, 12.0),
            (3.75, 3.75),
        ],
    )
    def test_parses_numbers(self, raw, expected) -> None:
        """Test grouping separators, decimal commas and plain numbers."""
        assert parse_number_value(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["not a number", "", "brak", None, True, [], {"value": 1}])
    def test_unparseable_values_are_none(self, raw) -> None:
        """Test that failures are None, never zero."""
        assert parse_number_value(raw) is None

    @pytest.mark.parametrize("raw", [math.nan, math.inf, -math.inf, "9" * 400, "-" + "9" * 400 + " zł"])
    def test_non_finite_floats_are_none(self, raw) -> None:
        """Test that NaN, infinities and overflowing digit strings are rejected."""
        assert parse_number_value(raw) is None

    def test_zero_is_distinguishable_from_failure(self) -> None:
        """Test that a zero premium is a real value."""
        assert parse_number_value("0,00 zł") == 0.0
        assert parse_number_value("0,00 zł") is not None
