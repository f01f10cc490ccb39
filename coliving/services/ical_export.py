"""Publish an apartment's occupied dates as an iCal feed for external channels."""
import logging
from datetime import date, datetime, timedelta
from typing import Optional

import pytz
from icalendar import Calendar, Event
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.config import settings
from coliving.core.exceptions import NotFoundError
from coliving.models.apartment import Apartment
from coliving.models.calendar_day import DAY_AVAILABLE, DAY_BOOKED
from coliving.services.availability_store import AvailabilityStore, availability_store

logger = logging.getLogger(__name__)

PRODID = "-//Coliving//Availability Export//EN"


class ICalExporter:
    """Builds one all-day VEVENT per booked or blocked calendar day."""

    def __init__(self, store: AvailabilityStore):
        self.store = store

    async def build_calendar(
        self,
        db: AsyncSession,
        apartment_id: int,
        start: Optional[date] = None,
        days: Optional[int] = None,
    ) -> bytes:
        """
        Serialize an apartment's calendar.

        Args:
            db: Database session
            apartment_id: Apartment ID
            start: First exported date (defaults to today)
            days: Number of days exported (defaults to settings)

        Returns:
            The VCALENDAR document

        Raises:
            NotFoundError: Unknown apartment
        """
        result = await db.execute(select(Apartment).where(Apartment.id == apartment_id))
        apartment = result.scalar_one_or_none()

        if not apartment:
            raise NotFoundError(f"Apartment {apartment_id} not found")

        start = start or date.today()
        end = start + timedelta(days=days or settings.ICAL_EXPORT_DAYS)
        rows = await self.store.get_calendar(db, apartment_id, start, end)

        calendar = Calendar()
        calendar.add("prodid", PRODID)
        calendar.add("version", "2.0")
        calendar.add("calscale", "GREGORIAN")
        calendar.add("method", "PUBLISH")
        calendar.add("x-wr-calname", f"{apartment.title} - Availability")
        calendar.add("x-wr-timezone", settings.PROPERTY_TIMEZONE)

        stamp = datetime.now(pytz.UTC)
        exported = 0
        for row in rows:
            if row.status == DAY_AVAILABLE:
                continue

            event = Event()
            event.add("uid", f"coliving-{apartment.id}-{row.date.isoformat()}")
            event.add("dtstamp", stamp)
            event.add("dtstart", row.date)
            event.add("dtend", row.date + timedelta(days=1))
            event.add("summary", f"{apartment.title} - {row.status.upper()}")
            event.add("status", "CONFIRMED" if row.status == DAY_BOOKED else "TENTATIVE")
            event.add("transp", "OPAQUE")
            event.add("categories", row.status.upper())

            description = f"Status: {row.status.upper()}"
            if row.notes:
                description += f"\nNotes: {row.notes}"
            event.add("description", description)

            calendar.add_component(event)
            exported += 1

        logger.info(f"Exported {exported} occupied days for apartment {apartment_id}")
        return calendar.to_ical()


# Singleton instance
ical_exporter = ICalExporter(availability_store)
