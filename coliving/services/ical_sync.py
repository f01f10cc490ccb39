"""iCal sync engine: merges external calendar feeds into the availability store.

Every calendar row a feed produces is tagged with the feed's name. A sync
replaces that feed's rows wholesale (delete by tag, then insert the fresh
set), so re-syncing is idempotent and events cancelled upstream disappear,
while rows written by other feeds or by direct bookings stay untouched.

Feeds sync independently: a fetch, parse or write failure is recorded in
that feed's result and never aborts its siblings.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set, Tuple

import httpx
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.config import settings
from coliving.core.dates import add_months, date_range
from coliving.core.exceptions import (
    ExternalFetchError,
    NotFoundError,
    ParseError,
    PersistenceError,
    ValidationError,
)
from coliving.models.apartment import Apartment
from coliving.models.calendar_day import CalendarDay, DAY_BOOKED, DIRECT_SOURCE
from coliving.models.ical_feed import ICalFeed
from coliving.schemas.ical import (
    CleanupResult,
    FeedDeleteResult,
    FeedSyncResult,
    ICalFeedCreate,
    SyncReport,
)
from coliving.services.availability_store import AvailabilityStore, availability_store
from coliving.services.ical_client import ICalClient, ical_client
from coliving.services.ical_parser import ParsedEvent, parse_feed

logger = logging.getLogger(__name__)

ALLOWED_URL_SCHEMES = ("http://", "https://", "webcal://")


class ICalSyncEngine:
    """Registers, syncs and cleans up external iCal feeds."""

    def __init__(self, store: AvailabilityStore, client: ICalClient):
        self.store = store
        self.client = client

    async def add_feed(
        self, db: AsyncSession, apartment_id: int, data: ICalFeedCreate
    ) -> ICalFeed:
        """
        Register a feed on an apartment.

        Raises:
            ValidationError: Unknown apartment, reserved or duplicate name, bad URL
        """
        feed_name = data.feed_name.strip()
        if not feed_name or feed_name.lower() == DIRECT_SOURCE:
            raise ValidationError(f"Feed name '{data.feed_name}' is reserved")
        if not data.ical_url.strip().lower().startswith(ALLOWED_URL_SCHEMES):
            raise ValidationError(f"Unsupported feed URL: {data.ical_url}")
        try:
            parsed = httpx.URL(ICalClient.normalize_url(data.ical_url))
        except (httpx.InvalidURL, ValueError) as e:
            raise ValidationError(f"Invalid feed URL {data.ical_url}: {e}") from e
        if not parsed.host:
            raise ValidationError(f"Feed URL has no host: {data.ical_url}")

        await self._get_apartment(db, apartment_id)

        result = await db.execute(
            select(ICalFeed).where(
                and_(ICalFeed.apartment_id == apartment_id, ICalFeed.feed_name == feed_name)
            )
        )
        if result.scalar_one_or_none():
            raise ValidationError(
                f"Feed '{feed_name}' already exists for apartment {apartment_id}"
            )

        feed = ICalFeed(
            apartment_id=apartment_id,
            feed_name=feed_name,
            ical_url=data.ical_url.strip(),
            is_active=data.is_active,
        )
        db.add(feed)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ValidationError(
                f"Feed '{feed_name}' already exists for apartment {apartment_id}"
            ) from e

        await db.refresh(feed)
        logger.info(f"Added iCal feed '{feed_name}' ({feed.id}) to apartment {apartment_id}")
        return feed

    async def list_feeds(
        self, db: AsyncSession, apartment_id: int, include_inactive: bool = False
    ) -> List[ICalFeed]:
        """List an apartment's feeds, oldest first."""
        query = select(ICalFeed).where(ICalFeed.apartment_id == apartment_id)
        if not include_inactive:
            query = query.where(ICalFeed.is_active.is_(True))
        result = await db.execute(query.order_by(ICalFeed.created_at, ICalFeed.id))
        return list(result.scalars().all())

    async def get_feed(self, db: AsyncSession, feed_id: int) -> ICalFeed:
        """Get a feed or raise NotFoundError."""
        result = await db.execute(select(ICalFeed).where(ICalFeed.id == feed_id))
        feed = result.scalar_one_or_none()

        if not feed:
            raise NotFoundError(f"iCal feed {feed_id} not found")

        return feed

    async def delete_feed(self, db: AsyncSession, feed_id: int) -> FeedDeleteResult:
        """
        Delete a feed together with every calendar row it produced.

        Raises:
            NotFoundError: Unknown feed
        """
        feed = await self.get_feed(db, feed_id)
        feed_name = feed.feed_name

        try:
            deleted = await self.store.delete_by_source(db, feed.apartment_id, feed_name)
            await db.delete(feed)
            await db.commit()
        except (PersistenceError, SQLAlchemyError):
            await db.rollback()
            raise

        logger.info(f"Deleted iCal feed '{feed_name}' ({feed_id}) and {deleted} calendar rows")
        return FeedDeleteResult(feed_id=feed_id, feed_name=feed_name, availability_deleted=deleted)

    async def sync_feed(
        self, db: AsyncSession, feed_id: int, today: Optional[date] = None
    ) -> FeedSyncResult:
        """
        Sync one feed.

        Args:
            db: Database session
            feed_id: Feed ID
            today: Reference date for skipping past and far-future events

        Returns:
            The feed's sync result; fetch, parse and write failures are
            reported in it rather than raised

        Raises:
            NotFoundError: Unknown or inactive feed
        """
        feed = await self.get_feed(db, feed_id)
        if not feed.is_active:
            raise NotFoundError(f"iCal feed {feed_id} is inactive")

        return await self._sync_one(db, feed, today)

    async def sync_all_feeds(
        self, db: AsyncSession, apartment_id: int, today: Optional[date] = None
    ) -> SyncReport:
        """
        Sync every active feed of an apartment, each independently.

        Raises:
            ValidationError: Unknown apartment
        """
        await self._get_apartment(db, apartment_id)
        feed_ids = [feed.id for feed in await self.list_feeds(db, apartment_id)]

        results = []
        for feed_id in feed_ids:
            # Re-read: a failed sibling's rollback expires loaded instances
            feed = await self.get_feed(db, feed_id)
            results.append(await self._sync_one(db, feed, today))

        failed = sum(1 for r in results if not r.success)
        logger.info(
            f"Synced {len(results)} feeds for apartment {apartment_id} ({failed} failed)"
        )
        return SyncReport(apartment_id=apartment_id, results=results)

    async def cleanup_orphaned(
        self, db: AsyncSession, apartment_id: Optional[int] = None
    ) -> CleanupResult:
        """
        Delete calendar rows tagged with a feed that no longer exists or is inactive.

        Rows from direct bookings and untagged manual blocks are never touched.

        Args:
            db: Database session
            apartment_id: Limit the scan to one apartment

        Returns:
            Number of rows deleted and the orphaned feed names
        """
        tagged_query = (
            select(CalendarDay.apartment_id, CalendarDay.source_tag)
            .where(
                and_(
                    CalendarDay.source_tag.is_not(None),
                    CalendarDay.source_tag != DIRECT_SOURCE,
                )
            )
            .distinct()
        )
        feeds_query = select(ICalFeed.apartment_id, ICalFeed.feed_name).where(
            ICalFeed.is_active.is_(True)
        )
        if apartment_id is not None:
            tagged_query = tagged_query.where(CalendarDay.apartment_id == apartment_id)
            feeds_query = feeds_query.where(ICalFeed.apartment_id == apartment_id)

        tagged = {(row[0], row[1]) for row in (await db.execute(tagged_query)).all()}
        active = {(row[0], row[1]) for row in (await db.execute(feeds_query)).all()}
        orphans = sorted(tagged - active)

        deleted = 0
        try:
            for orphan_apartment_id, source_tag in orphans:
                deleted += await self.store.delete_by_source(db, orphan_apartment_id, source_tag)
            await db.commit()
        except (PersistenceError, SQLAlchemyError):
            await db.rollback()
            raise

        if orphans:
            logger.info(f"Removed {deleted} orphaned calendar rows from {len(orphans)} stale feeds")

        return CleanupResult(
            deleted_count=deleted,
            orphaned_feeds=sorted({source_tag for _, source_tag in orphans}),
        )

    async def _sync_one(
        self, db: AsyncSession, feed: ICalFeed, today: Optional[date]
    ) -> FeedSyncResult:
        feed_id, feed_name, apartment_id = feed.id, feed.feed_name, feed.apartment_id
        timezone_name = settings.PROPERTY_TIMEZONE if settings.ICAL_CONVERT_TO_PROPERTY_TZ else None

        try:
            text = await self.client.fetch(feed.ical_url)
            parsed = parse_feed(text, timezone=timezone_name)
        except (ExternalFetchError, ParseError) as e:
            logger.error(f"Sync of feed '{feed_name}' ({feed_id}) failed: {e}")
            return FeedSyncResult(feed_id=feed_id, feed_name=feed_name, success=False, error=str(e))

        dates, out_of_window = self._expand(parsed.events, today or date.today())

        try:
            cleared = await self.store.delete_by_source(db, apartment_id, feed_name)
            await self.store.set_bulk(
                db,
                apartment_id,
                dates,
                DAY_BOOKED,
                source_tag=feed_name,
                notes=f"Synced from {feed_name}",
                preserve_occupied=True,
            )
            feed.last_sync = datetime.now(timezone.utc)
            await db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(f"Sync of feed '{feed_name}' ({feed_id}) could not be stored: {e}")
            await db.rollback()
            return FeedSyncResult(feed_id=feed_id, feed_name=feed_name, success=False, error=str(e))

        logger.info(
            f"Synced feed '{feed_name}' for apartment {apartment_id}: "
            f"{len(parsed.events)} events, {len(dates)} dates booked, {cleared} previous rows replaced"
        )
        return FeedSyncResult(
            feed_id=feed_id,
            feed_name=feed_name,
            success=True,
            events_processed=len(parsed.events),
            events_skipped=parsed.skipped + out_of_window,
            dates_booked=len(dates),
            dates_cleared=cleared,
        )

    def _expand(self, events: Iterable[ParsedEvent], today: date) -> Tuple[Set[date], int]:
        """Occupied dates of the events inside the sync window, and how many were left out."""
        horizon = add_months(today, settings.ICAL_SYNC_HORIZON_MONTHS)
        max_days = timedelta(days=settings.ICAL_MAX_EVENT_DAYS)

        dates = set()
        skipped = 0
        for event in events:
            if event.end <= today or event.start > horizon:
                skipped += 1
                continue

            end = event.end
            if end - event.start > max_days:
                logger.warning(
                    f"Event {event.uid} spans {(end - event.start).days} days, "
                    f"truncating to {settings.ICAL_MAX_EVENT_DAYS}"
                )
                end = event.start + max_days

            dates.update(date_range(event.start, end))

        return dates, skipped

    async def _get_apartment(self, db: AsyncSession, apartment_id: int) -> Apartment:
        result = await db.execute(select(Apartment).where(Apartment.id == apartment_id))
        apartment = result.scalar_one_or_none()

        if not apartment:
            raise ValidationError(f"Apartment {apartment_id} not found")

        return apartment


# Singleton instance
ical_sync_engine = ICalSyncEngine(availability_store, ical_client)
