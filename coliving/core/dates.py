"""Calendar-date arithmetic shared by bookings, search and feed sync.

All stay ranges are half-open: ``[check_in, check_out)``. The checkout day is
never occupied by the departing stay, which allows same-day turnover.
"""
import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Union

import pytz

from coliving.core.exceptions import ValidationError

CENT = Decimal("0.01")


def validate_range(check_in: date, check_out: date) -> None:
    """Raise ValidationError unless check_out is strictly after check_in."""
    if check_in is None or check_out is None:
        raise ValidationError("Both check-in and check-out dates are required")
    if check_out <= check_in:
        raise ValidationError(
            f"Check-out {check_out.isoformat()} must be after check-in {check_in.isoformat()}"
        )


def date_range(start: date, end: date) -> List[date]:
    """Dates in ``[start, end)``."""
    return [start + timedelta(days=offset) for offset in range((end - start).days)]


def nights(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True if two half-open ranges share at least one date."""
    return a_start < b_end and b_start < a_end


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def to_calendar_date(
    value: Union[date, datetime],
    timezone: Optional[str] = None,
) -> date:
    """Reduce an iCal DATE or DATE-TIME value to a calendar date.

    All-day values are returned unchanged. Timestamps keep the date they carry
    in their own zone (the TZID they were written with, or UTC for ``Z``
    values) unless ``timezone`` is given, in which case aware timestamps are
    first converted into that zone.
    """
    if isinstance(value, datetime):
        if timezone and value.tzinfo is not None:
            value = value.astimezone(pytz.timezone(timezone))
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError(f"Unsupported calendar value: {value!r}")


def prorated_price(monthly_price: Decimal, stay_nights: int, days_per_month: int = 30) -> Decimal:
    """Flat daily proration of a monthly price, rounded half-up to cents."""
    amount = Decimal(monthly_price) * stay_nights / days_per_month
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
