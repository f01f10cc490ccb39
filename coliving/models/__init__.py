"""Database models."""
from coliving.models.apartment import Apartment
from coliving.models.booking import Booking, BookingSegment
from coliving.models.calendar_day import CalendarDay
from coliving.models.ical_feed import ICalFeed

__all__ = ["Apartment", "Booking", "BookingSegment", "CalendarDay", "ICalFeed"]
