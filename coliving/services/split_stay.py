"""Split-stay search.

When no single apartment covers a requested stay, look for sequences of
apartments that hand over back-to-back and together cover the whole range.

The search itself is synchronous and pure: it works on a catalog of
apartments mapped to their unavailable dates. ``SplitStaySearch`` gathers
that catalog from the database and runs it.

Prices use a flat 30-day month (``PRORATION_DAYS``), an approximation that
ignores actual month length.
"""
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.config import settings
from coliving.core.dates import nights, prorated_price, validate_range
from coliving.core.exceptions import ValidationError
from coliving.models.apartment import Apartment, APARTMENT_AVAILABLE
from coliving.schemas.split_stay import SplitStayOption, SplitStaySegment
from coliving.services.availability_store import AvailabilityStore, availability_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityWindow:
    """A maximal run of available dates [start, end) for one apartment."""

    apartment: Apartment
    start: date
    end: date

    def covers(self, day: date) -> bool:
        return self.start <= day < self.end


def availability_windows(
    apartment: Apartment,
    unavailable: Set[date],
    start: date,
    end: date,
) -> List[AvailabilityWindow]:
    """Run-length encode the available dates of [start, end) into windows."""
    windows = []
    window_start = None
    day = start
    while day < end:
        if day in unavailable:
            if window_start is not None:
                windows.append(AvailabilityWindow(apartment, window_start, day))
                window_start = None
        elif window_start is None:
            window_start = day
        day += timedelta(days=1)

    if window_start is not None:
        windows.append(AvailabilityWindow(apartment, window_start, end))

    return windows


def search_split_stays(
    start: date,
    end: date,
    catalog: Mapping[Apartment, Set[date]],
    max_segments: int = 3,
    limit: int = 10,
    days_per_month: int = 30,
) -> List[SplitStayOption]:
    """
    Find ranked split-stay combinations covering [start, end).

    Args:
        start: Requested check-in
        end: Requested check-out (exclusive)
        catalog: Apartment -> dates it is unavailable within [start, end)
        max_segments: Maximum number of apartments per combination
        limit: Maximum number of options returned
        days_per_month: Proration divisor for monthly prices

    Returns:
        Options with 2..max_segments segments, fewest segments first,
        then cheapest. Empty when nothing fits.
    """
    validate_range(start, end)
    if max_segments < 2:
        raise ValidationError(f"max_segments must be at least 2, got {max_segments}")

    pool: List[AvailabilityWindow] = []
    for apartment in sorted(catalog, key=lambda a: a.id):
        pool.extend(availability_windows(apartment, catalog[apartment], start, end))

    found: List[List[SplitStaySegment]] = []
    chosen: List[SplitStaySegment] = []

    def extend_from(cursor: date) -> None:
        if cursor >= end:
            if 2 <= len(chosen) <= max_segments:
                found.append(list(chosen))
            return
        if len(chosen) >= max_segments:
            return

        for window in pool:
            if not window.covers(cursor):
                continue
            check_out = min(window.end, end)
            stay_nights = nights(cursor, check_out)
            chosen.append(
                SplitStaySegment(
                    apartment_id=window.apartment.id,
                    apartment_title=window.apartment.title,
                    check_in=cursor,
                    check_out=check_out,
                    nights=stay_nights,
                    price=prorated_price(window.apartment.price, stay_nights, days_per_month),
                )
            )
            extend_from(check_out)
            chosen.pop()

    extend_from(start)

    options: Dict[Tuple, SplitStayOption] = {}
    for segments in found:
        if len(segments) < 2 or segments[-1].check_out < end:
            continue
        key = tuple((s.apartment_id, s.check_in, s.check_out) for s in segments)
        if key in options:
            continue
        options[key] = SplitStayOption(
            segments=segments,
            segment_count=len(segments),
            total_price=sum((s.price for s in segments), Decimal("0")),
        )

    ranked = sorted(options.values(), key=lambda o: (o.segment_count, o.total_price))
    return ranked[:limit]


class SplitStaySearch:
    """Runs the split-stay search over the live apartment catalog."""

    def __init__(self, store: AvailabilityStore):
        self.store = store

    async def find_split_stay_options(
        self,
        db: AsyncSession,
        start: date,
        end: date,
        max_segments: Optional[int] = None,
    ) -> List[SplitStayOption]:
        """
        Find split-stay options among apartments open for booking.

        Args:
            db: Database session
            start: Requested check-in
            end: Requested check-out (exclusive)
            max_segments: Maximum apartments per option (defaults to settings)

        Returns:
            Ranked options, possibly empty
        """
        validate_range(start, end)
        if max_segments is None:
            max_segments = settings.SPLIT_STAY_MAX_SEGMENTS

        result = await db.execute(
            select(Apartment)
            .where(Apartment.status == APARTMENT_AVAILABLE)
            .order_by(Apartment.id)
        )
        apartments = result.scalars().all()

        if not apartments:
            return []

        catalog = {}
        for apartment in apartments:
            catalog[apartment] = await self.store.unavailable_dates(db, apartment.id, start, end)

        options = search_split_stays(
            start,
            end,
            catalog,
            max_segments=max_segments,
            limit=settings.SPLIT_STAY_MAX_RESULTS,
            days_per_month=settings.PRORATION_DAYS,
        )

        logger.info(
            f"Split-stay search {start} -> {end} over {len(apartments)} apartments "
            f"(max {max_segments} segments): {len(options)} options"
        )
        return options


# Singleton instance
split_stay_search = SplitStaySearch(availability_store)
