"""Availability schemas."""
from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import date


class CalendarDayInDB(BaseModel):
    """Schema for a single calendar day row."""

    apartment_id: int
    date: date
    status: str  # available, booked, blocked
    source_tag: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CalendarResponse(BaseModel):
    """Schema for an apartment calendar over a date range."""

    apartment_id: int
    start: date
    end: date
    days: List[CalendarDayInDB]


class AvailabilityCheck(BaseModel):
    """Schema for a half-open range availability answer."""

    apartment_id: int
    check_in: date
    check_out: date
    available: bool
    unavailable_dates: List[date] = []


class ReconcileResult(BaseModel):
    """Schema for a ledger-to-calendar reconciliation pass."""

    apartment_id: int
    dates_booked: int
    dates_released: int
