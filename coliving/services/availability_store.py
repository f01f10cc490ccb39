"""Availability store: the per-apartment, per-date occupancy cache.

The calendar table is a materialized cache shared by every writer (booking
lifecycle, feed sync, manual blocks). Writes are idempotent bulk upserts keyed
on (apartment_id, date) with last-write-wins semantics. Availability answers
always consult the bookings ledger as well, so a stale cache can never on its
own let a double booking through.
"""
import logging
from datetime import date
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.dates import date_range, validate_range
from coliving.core.exceptions import PersistenceError
from coliving.models.booking import Booking, BookingSegment, OCCUPYING_STATUSES
from coliving.models.calendar_day import (
    CalendarDay,
    DAY_AVAILABLE,
    DIRECT_SOURCE,
    OCCUPIED_DAY_STATUSES,
)

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 500

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class AvailabilityStore:
    """Range queries and bulk writes over the calendar cache."""

    async def get_calendar(
        self,
        db: AsyncSession,
        apartment_id: int,
        start: date,
        end: date,
    ) -> List[CalendarDay]:
        """
        Get calendar rows for an apartment.

        Args:
            db: Database session
            apartment_id: Apartment ID
            start: First date (inclusive)
            end: Last date (inclusive)

        Returns:
            Calendar rows ordered by date
        """
        result = await db.execute(
            select(CalendarDay)
            .where(
                and_(
                    CalendarDay.apartment_id == apartment_id,
                    CalendarDay.date >= start,
                    CalendarDay.date <= end,
                )
            )
            .order_by(CalendarDay.date)
            # Rows are rewritten by bulk upserts that bypass the identity map
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def set_bulk(
        self,
        db: AsyncSession,
        apartment_id: int,
        dates: Iterable[date],
        status: str,
        source_tag: Optional[str] = None,
        notes: Optional[str] = None,
        preserve_occupied: bool = False,
    ) -> int:
        """
        Upsert one status onto many dates of one apartment.

        Re-running the same call leaves the table unchanged. Does not commit.

        Args:
            db: Database session
            apartment_id: Apartment ID
            dates: Dates to write
            status: available, booked or blocked
            source_tag: Writer of the rows ("direct" or a feed name)
            notes: Free-text note stored on every row
            preserve_occupied: Leave rows occupied by another source untouched

        Returns:
            Number of dates submitted

        Raises:
            PersistenceError: If the database rejects the write
        """
        unique_dates = sorted(set(dates))
        if not unique_dates:
            return 0

        dialect = db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise PersistenceError(f"Bulk upsert is not supported on dialect '{dialect}'")

        try:
            for offset in range(0, len(unique_dates), UPSERT_BATCH_SIZE):
                batch = unique_dates[offset:offset + UPSERT_BATCH_SIZE]
                stmt = insert(CalendarDay).values(
                    [
                        {
                            "apartment_id": apartment_id,
                            "date": day,
                            "status": status,
                            "source_tag": source_tag,
                            "notes": notes,
                        }
                        for day in batch
                    ]
                )
                where = None
                if preserve_occupied:
                    where = or_(
                        CalendarDay.status == DAY_AVAILABLE,
                        CalendarDay.source_tag == source_tag,
                    )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["apartment_id", "date"],
                    set_={
                        "status": stmt.excluded.status,
                        "source_tag": stmt.excluded.source_tag,
                        "notes": stmt.excluded.notes,
                        "updated_at": func.now(),
                    },
                    where=where,
                )
                await db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to write {len(unique_dates)} calendar days for apartment {apartment_id}: {e}"
            ) from e

        logger.debug(
            f"Set {len(unique_dates)} days to '{status}' for apartment {apartment_id} "
            f"(source={source_tag})"
        )
        return len(unique_dates)

    async def delete_by_source(
        self, db: AsyncSession, apartment_id: int, source_tag: str
    ) -> int:
        """Delete every calendar row one source wrote for one apartment. Does not commit."""
        try:
            result = await db.execute(
                delete(CalendarDay).where(
                    and_(
                        CalendarDay.apartment_id == apartment_id,
                        CalendarDay.source_tag == source_tag,
                    )
                )
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to clear '{source_tag}' rows for apartment {apartment_id}: {e}"
            ) from e
        return result.rowcount or 0

    async def ledger_ranges(
        self,
        db: AsyncSession,
        apartment_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Tuple[date, date]]:
        """
        Half-open ranges occupied on an apartment according to the bookings ledger.

        Plain bookings contribute their own range; split stays contribute
        the segments placed on this apartment. Only confirmed and checked-in
        bookings count. When start/end are given, only ranges overlapping
        [start, end) are returned.
        """
        plain = select(Booking.check_in_date, Booking.check_out_date).where(
            and_(
                Booking.apartment_id == apartment_id,
                Booking.is_split_stay.is_(False),
                Booking.status.in_(OCCUPYING_STATUSES),
            )
        )
        segments = (
            select(BookingSegment.check_in_date, BookingSegment.check_out_date)
            .join(Booking, BookingSegment.parent_booking_id == Booking.id)
            .where(
                and_(
                    BookingSegment.apartment_id == apartment_id,
                    Booking.is_split_stay.is_(True),
                    Booking.status.in_(OCCUPYING_STATUSES),
                )
            )
        )
        if end is not None:
            plain = plain.where(Booking.check_in_date < end)
            segments = segments.where(BookingSegment.check_in_date < end)
        if start is not None:
            plain = plain.where(Booking.check_out_date > start)
            segments = segments.where(BookingSegment.check_out_date > start)
        if exclude_booking_id is not None:
            plain = plain.where(Booking.id != exclude_booking_id)
            segments = segments.where(Booking.id != exclude_booking_id)

        ranges = []
        for query in (plain, segments):
            result = await db.execute(query)
            ranges.extend((row[0], row[1]) for row in result.all())
        return sorted(ranges)

    async def has_ledger_overlap(
        self,
        db: AsyncSession,
        apartment_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None,
    ) -> bool:
        """True if an occupying booking overlaps [check_in, check_out)."""
        ranges = await self.ledger_ranges(
            db, apartment_id, check_in, check_out, exclude_booking_id
        )
        return bool(ranges)

    async def conflicting_dates(
        self,
        db: AsyncSession,
        apartment_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None,
    ) -> List[date]:
        """
        Dates in [check_in, check_out) that prevent a stay.

        A date conflicts when its calendar row is booked or blocked, or when
        the ledger holds an occupying booking over it. When a booking is
        excluded, "direct" calendar rows are ignored: those rows mirror the
        ledger, which is checked with the exclusion applied.
        """
        validate_range(check_in, check_out)

        query = select(CalendarDay.date).where(
            and_(
                CalendarDay.apartment_id == apartment_id,
                CalendarDay.date >= check_in,
                CalendarDay.date < check_out,
                CalendarDay.status.in_(OCCUPIED_DAY_STATUSES),
            )
        )
        if exclude_booking_id is not None:
            query = query.where(
                or_(CalendarDay.source_tag.is_(None), CalendarDay.source_tag != DIRECT_SOURCE)
            )
        result = await db.execute(query)
        conflicts = set(result.scalars().all())

        for range_start, range_end in await self.ledger_ranges(
            db, apartment_id, check_in, check_out, exclude_booking_id
        ):
            conflicts.update(
                day for day in date_range(range_start, range_end) if check_in <= day < check_out
            )
        return sorted(conflicts)

    async def is_range_available(
        self,
        db: AsyncSession,
        apartment_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None,
    ) -> bool:
        """True iff the apartment can host a stay over [check_in, check_out)."""
        conflicts = await self.conflicting_dates(
            db, apartment_id, check_in, check_out, exclude_booking_id
        )
        return not conflicts

    async def unavailable_dates(
        self,
        db: AsyncSession,
        apartment_id: int,
        start: date,
        end: date,
    ) -> Set[date]:
        """Unavailable dates in [start, end), from the calendar and the ledger."""
        if end <= start:
            return set()
        return set(await self.conflicting_dates(db, apartment_id, start, end))


# Singleton instance
availability_store = AvailabilityStore()
