"""Background scheduler for feed sync and calendar reconciliation."""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from coliving.core.config import settings
from coliving.core.database import AsyncSessionLocal
from coliving.models.apartment import Apartment
from coliving.models.ical_feed import ICalFeed
from coliving.services.booking_manager import booking_manager
from coliving.services.ical_sync import ical_sync_engine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs periodic iCal syncs and ledger-to-calendar reconciliation."""

    def __init__(self):
        """Initialize the scheduler."""
        self.scheduler = AsyncIOScheduler()
        self.running = False

    async def start(self):
        """Start the scheduler."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        logger.info("Starting sync scheduler")

        self.scheduler.add_job(
            self.sync_all_apartments,
            IntervalTrigger(minutes=settings.ICAL_SYNC_INTERVAL_MINUTES),
            id="ical_sync_job",
            name="Sync iCal feeds",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self.reconcile_all_apartments,
            IntervalTrigger(minutes=settings.RECONCILE_INTERVAL_MINUTES),
            id="reconcile_job",
            name="Reconcile calendar with bookings",
            replace_existing=True,
            max_instances=1,
        )

        booking_manager.release_hooks.append(self.request_feed_resync)

        self.scheduler.start()
        self.running = True
        logger.info("Sync scheduler started")

    async def stop(self):
        """Stop the scheduler."""
        if not self.running:
            return

        logger.info("Stopping sync scheduler")
        self.scheduler.shutdown(wait=False)
        self.running = False
        if self.request_feed_resync in booking_manager.release_hooks:
            booking_manager.release_hooks.remove(self.request_feed_resync)
        logger.info("Sync scheduler stopped")

    def request_feed_resync(self, apartment_ids):
        """
        Queue an immediate feed sync for apartments whose direct dates were released.

        Feed dates skipped while a booking held them only return on the
        next sync of that feed.
        """
        if not self.running:
            return

        self.scheduler.add_job(
            self.sync_apartments,
            args=[sorted(apartment_ids)],
            name="Re-sync feeds after release",
        )

    async def sync_apartments(self, apartment_ids):
        """Sync the active feeds of the given apartments."""
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ICalFeed.apartment_id)
                .where(ICalFeed.is_active.is_(True), ICalFeed.apartment_id.in_(apartment_ids))
                .distinct()
            )
            await self._sync_feeds(db, sorted(result.scalars().all()))

    async def sync_all_apartments(self):
        """
        Sync the feeds of every apartment that has an active feed, then drop
        rows left behind by feeds deleted outside the sync path.

        Failed feeds are reported in their apartment's report and retried on
        the next run.
        """
        logger.debug("Running iCal sync")

        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ICalFeed.apartment_id)
                .where(ICalFeed.is_active.is_(True))
                .distinct()
            )
            apartment_ids = sorted(result.scalars().all())

            logger.info(f"Found {len(apartment_ids)} apartments with active feeds")
            await self._sync_feeds(db, apartment_ids)

            try:
                await ical_sync_engine.cleanup_orphaned(db)
            except Exception as e:
                logger.error(f"Orphan cleanup failed: {e}", exc_info=True)

    async def _sync_feeds(self, db, apartment_ids):
        for apartment_id in apartment_ids:
            try:
                report = await ical_sync_engine.sync_all_feeds(db, apartment_id)
                for failure in report.failed:
                    logger.warning(
                        f"Feed '{failure.feed_name}' of apartment {apartment_id} failed: {failure.error}"
                    )
            except Exception as e:
                logger.error(
                    f"Failed to sync feeds for apartment {apartment_id}: {e}",
                    exc_info=True,
                )
                await db.rollback()

    async def reconcile_all_apartments(self):
        """Re-derive the booking-owned calendar rows of every apartment."""
        logger.debug("Running calendar reconciliation")

        async with AsyncSessionLocal() as db:
            result = await db.execute(select(Apartment.id).order_by(Apartment.id))
            apartment_ids = result.scalars().all()

            for apartment_id in apartment_ids:
                try:
                    await booking_manager.reconcile_calendar(db, apartment_id)
                except Exception as e:
                    logger.error(
                        f"Failed to reconcile apartment {apartment_id}: {e}",
                        exc_info=True,
                    )


# Singleton instance
sync_scheduler = SyncScheduler()
