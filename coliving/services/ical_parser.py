"""iCal feed parsing.

Extracts VEVENTs from an iCalendar document with ``icalendar``, which takes
care of line unfolding and of DATE, DATE-TIME and TZID-qualified values.
Each event becomes a half-open calendar-date range [start, end); DTEND is
exclusive as in RFC 5545.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from icalendar import Calendar

from coliving.core.dates import to_calendar_date
from coliving.core.exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ParsedEvent:
    """A VEVENT reduced to calendar dates."""

    uid: str
    start: date
    end: date
    summary: Optional[str] = None


@dataclass
class ParsedFeed:
    """Events extracted from one document, plus the malformed ones skipped."""

    events: List[ParsedEvent] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def parse_event(component, timezone: Optional[str] = None) -> ParsedEvent:
    """
    Parse one VEVENT component.

    Raises:
        ParseError: Missing UID, DTSTART or DTEND, or DTEND before DTSTART
    """
    uid = str(component.get("UID", "")).strip()
    if not uid:
        raise ParseError("VEVENT without UID")

    dtstart = component.get("DTSTART")
    dtend = component.get("DTEND")
    if dtstart is None:
        raise ParseError(f"VEVENT {uid} has no DTSTART")
    if dtend is None:
        raise ParseError(f"VEVENT {uid} has no DTEND")

    try:
        start = to_calendar_date(getattr(dtstart, "dt", None), timezone)
        end = to_calendar_date(getattr(dtend, "dt", None), timezone)
    except ValidationError as e:
        raise ParseError(f"VEVENT {uid} has an invalid date: {e}") from e

    if end < start:
        raise ParseError(f"VEVENT {uid} ends ({end}) before it starts ({start})")

    summary = str(component.get("SUMMARY", "")).strip() or None
    return ParsedEvent(uid=uid, start=start, end=end, summary=summary)


def parse_feed(text: str, timezone: Optional[str] = None) -> ParsedFeed:
    """
    Parse an iCalendar document.

    Malformed events are skipped and counted; the rest of the feed is kept.

    Args:
        text: Raw document
        timezone: Zone to convert aware timestamps into before taking their date

    Returns:
        Parsed events and the skipped count

    Raises:
        ParseError: The document itself cannot be parsed
    """
    try:
        calendar = Calendar.from_ical(text)
    except Exception as e:
        raise ParseError(f"Invalid iCalendar document: {e}") from e

    parsed = ParsedFeed()
    for component in calendar.walk("VEVENT"):
        try:
            parsed.events.append(parse_event(component, timezone))
        except ParseError as e:
            logger.warning(f"Skipping event: {e}")
            parsed.skipped += 1
            parsed.errors.append(str(e))

    return parsed
