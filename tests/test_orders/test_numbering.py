"""Tests for order number generation."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from storefront.services.orders.numbering import (
    ORDER_NUMBER_PATTERN,
    generate_order_number,
    is_valid_order_number,
)


class TestGenerateOrderNumber:
    """Test the BW-YYYYMMDD-XXXXXX format."""

    def test_matches_pattern(self) -> None:
        order_no = generate_order_number()

        assert ORDER_NUMBER_PATTERN.match(order_no)
        assert is_valid_order_number(order_no)

    def test_date_part_is_utc_date(self) -> None:
        """An evening in Lagos (UTC+1) just after midnight is still the UTC date."""
        lagos = timezone(timedelta(hours=1))
        now = datetime(2024, 6, 12, 0, 30, tzinfo=lagos)

        order_no = generate_order_number(now)

        assert order_no.startswith("BW-20240611-")

    def test_suffix_is_upper_alphanumeric(self) -> None:
        for _ in range(50):
            suffix = generate_order_number().rsplit("-", 1)[-1]
            assert len(suffix) == 6
            assert suffix.isalnum()
            assert suffix == suffix.upper()

    def test_numbers_vary(self) -> None:
        now = datetime(2024, 6, 11, tzinfo=timezone.utc)
        numbers = {generate_order_number(now) for _ in range(200)}

        assert len(numbers) > 190


class TestIsValidOrderNumber:
    """Test order number validation."""

    def test_rejects_lowercase_suffix(self) -> None:
        assert not is_valid_order_number("BW-20240611-abc123")

    def test_rejects_wrong_prefix(self) -> None:
        assert not is_valid_order_number("XX-20240611-ABC123")

    def test_rejects_impossible_date(self) -> None:
        assert not is_valid_order_number("BW-20241341-ABC123")

    def test_accepts_well_formed(self) -> None:
        assert is_valid_order_number("BW-20240229-Z9Z9Z9")

    def test_order_records_require_valid_numbers(self, build_order) -> None:
        with pytest.raises(ValidationError):
            build_order(order_no="BW-20241341-ABC123")
