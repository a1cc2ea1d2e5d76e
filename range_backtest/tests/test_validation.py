"""
Tests for configuration boundary validators.
"""

import pytest

from range_backtest.exceptions import ConfigurationError
from range_backtest.validation import (
    ValidationError,
    validate_choice,
    validate_date,
    validate_date_range,
    validate_fraction,
    validate_limit,
    validate_non_negative_int,
    validate_positive_number,
    validate_range,
)


@pytest.mark.unit
class TestNumbers:

    def test_positive_number(self):
        assert validate_positive_number("3", "leverage") == 3.0

    @pytest.mark.parametrize("value", [0, -1, "abc", None, float("inf"), float("nan")])
    def test_positive_number_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_positive_number(value, "leverage")

    def test_non_negative_int(self):
        assert validate_non_negative_int(60, "lockBeforeEnd") == 60
        assert validate_non_negative_int("0", "lockBeforeEnd") == 0

    @pytest.mark.parametrize("value", [-1, 1.5, True, "x"])
    def test_non_negative_int_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_non_negative_int(value, "lockBeforeEnd")

    @pytest.mark.parametrize("value", [0, 0.5, 1])
    def test_fraction_bounds_inclusive(self, value):
        assert validate_fraction(value) == float(value)

    def test_fraction_rejects(self):
        with pytest.raises(ValidationError):
            validate_fraction(1.01, "entryShort")

    def test_range(self):
        assert validate_range(0.007) == 0.007
        with pytest.raises(ValidationError):
            validate_range(1.0)


@pytest.mark.unit
class TestDates:

    def test_valid(self):
        assert validate_date("2025-09-05") == "2025-09-05"
        assert validate_date_range("2025-09-05", "2025-09-05") == ("2025-09-05", "2025-09-05")

    @pytest.mark.parametrize("value", ["2025-9-5", "2025-13-01", 20250905, None])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_date(value)

    def test_reversed_range(self):
        with pytest.raises(ValidationError):
            validate_date_range("2025-09-11", "2025-09-05")


@pytest.mark.unit
class TestChoicesAndLimits:

    def test_choice(self):
        assert validate_choice("stub", ("live", "replay", "stub"), "oracle") == "stub"

    def test_choice_rejects(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_choice("remote", ("live", "replay"), "oracle")

        assert "live, replay" in str(exc_info.value)

    def test_limit(self):
        assert validate_limit(None) is None
        assert validate_limit("20") == 20

    @pytest.mark.parametrize("value", [0, 10001, "many"])
    def test_limit_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_limit(value)

    def test_validation_error_is_configuration_error(self):
        assert issubclass(ValidationError, ConfigurationError)
