"""Tests for calendar-date helpers."""
from datetime import date, datetime
from decimal import Decimal

import pytest
import pytz

from coliving.core.dates import (
    add_months,
    date_range,
    nights,
    overlaps,
    prorated_price,
    to_calendar_date,
    validate_range,
)
from coliving.core.exceptions import ValidationError


def test_validate_range_rejects_empty_and_inverted_ranges():
    validate_range(date(2024, 3, 10), date(2024, 3, 11))

    with pytest.raises(ValidationError):
        validate_range(date(2024, 3, 10), date(2024, 3, 10))
    with pytest.raises(ValidationError):
        validate_range(date(2024, 3, 10), date(2024, 3, 9))


def test_date_range_is_half_open():
    assert date_range(date(2024, 2, 28), date(2024, 3, 2)) == [
        date(2024, 2, 28),
        date(2024, 2, 29),
        date(2024, 3, 1),
    ]
    assert date_range(date(2024, 3, 1), date(2024, 3, 1)) == []
    assert nights(date(2024, 3, 10), date(2024, 3, 15)) == 5


def test_back_to_back_ranges_do_not_overlap():
    assert not overlaps(date(2024, 3, 10), date(2024, 3, 15), date(2024, 3, 15), date(2024, 3, 20))
    assert overlaps(date(2024, 3, 10), date(2024, 3, 15), date(2024, 3, 14), date(2024, 3, 20))


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2024, 5, 1), 24) == date(2026, 5, 1)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_to_calendar_date_keeps_wall_clock_date_by_default():
    late_evening = pytz.timezone("America/New_York").localize(datetime(2024, 6, 1, 23, 0))

    assert to_calendar_date(date(2024, 6, 1)) == date(2024, 6, 1)
    assert to_calendar_date(late_evening) == date(2024, 6, 1)
    assert to_calendar_date(late_evening, "Atlantic/Madeira") == date(2024, 6, 2)


def test_to_calendar_date_rejects_other_values():
    with pytest.raises(ValidationError):
        to_calendar_date("20240601")


def test_prorated_price_rounds_half_up_to_cents():
    assert prorated_price(Decimal("900"), 9) == Decimal("270.00")
    assert prorated_price(Decimal("1000"), 1) == Decimal("33.33")
    assert prorated_price(Decimal("300.75"), 1) == Decimal("10.03")
    assert prorated_price(Decimal("620"), 31, days_per_month=31) == Decimal("620.00")
