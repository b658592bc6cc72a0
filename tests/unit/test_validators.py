"""
Tests for core.validators module.
"""
import pytest

from core.validators import (
    require_store_id,
    parse_positive_int,
    parse_int_param,
    parse_customer_id,
    validate_filter_type,
)
from core.exceptions import ValidationError


class TestRequireStoreId:
    """Tests for require_store_id function."""

    def test_returns_stripped_value(self):
        """Surrounding whitespace is dropped."""
        assert require_store_id("  store-1 ") == "store-1"

    def test_missing_uses_default_message(self):
        """None raises with the default message."""
        with pytest.raises(ValidationError) as exc_info:
            require_store_id(None)
        assert exc_info.value.message == "Missing storeId"

    def test_blank_uses_custom_message(self):
        """Routes can supply their own message."""
        with pytest.raises(ValidationError) as exc_info:
            require_store_id("   ", "storeId is required")
        assert exc_info.value.message == "storeId is required"
        assert exc_info.value.field == "storeId"


class TestParsePositiveInt:
    """Tests for parse_positive_int function."""

    def test_none_returns_fallback(self):
        assert parse_positive_int(None, 10, 1, 50) == 10

    def test_non_numeric_returns_fallback(self):
        assert parse_positive_int("abc", 10, 1, 50) == 10

    def test_clamps_high(self):
        """Values above the max are clamped."""
        assert parse_positive_int("500", 10, 1, 50) == 50

    def test_clamps_zero_to_min(self):
        """Zero is numeric, so it is clamped rather than replaced."""
        assert parse_positive_int("0", 10, 1, 50) == 1

    def test_floors_decimals(self):
        assert parse_positive_int("7.9", 10, 1, 50) == 7

    def test_infinity_returns_fallback(self):
        assert parse_positive_int("inf", 10, 1, 50) == 10


class TestParseIntParam:
    """Tests for parse_int_param function."""

    def test_leading_integer(self):
        """Trailing garbage after a leading integer is ignored."""
        assert parse_int_param("12abc", 5, 1, 20) == 12

    def test_decimal_truncated(self):
        assert parse_int_param("7.9", 5, 1, 20) == 7

    def test_no_digits_returns_fallback(self):
        assert parse_int_param("abc", 5, 1, 20) == 5
        assert parse_int_param(None, 5, 1, 20) == 5
        assert parse_int_param("", 5, 1, 20) == 5

    def test_clamped(self):
        assert parse_int_param("-3", 5, 1, 20) == 1
        assert parse_int_param("99", 5, 1, 20) == 20


class TestParseCustomerId:
    """Tests for parse_customer_id function."""

    def test_valid(self):
        assert parse_customer_id("42") == 42

    @pytest.mark.parametrize("value", ["abc", "0", "-1", "1.5", None])
    def test_invalid(self, value):
        """Non-positive, fractional and non-numeric ids are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            parse_customer_id(value)
        assert exc_info.value.message == "Invalid customer id"


class TestValidateFilterType:
    """Tests for validate_filter_type function."""

    def test_default_is_date(self):
        assert validate_filter_type(None) == "date"
        assert validate_filter_type("") == "date"

    @pytest.mark.parametrize("value", ["date", "category", "coupon"])
    def test_accepted(self, value):
        assert validate_filter_type(value) == value

    def test_rejected(self):
        """Unknown types list the accepted values."""
        with pytest.raises(ValidationError) as exc_info:
            validate_filter_type("brand")
        assert "date, category, coupon" in exc_info.value.message
