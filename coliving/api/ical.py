"""iCal feed endpoints."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.database import get_db
from coliving.core.exceptions import NotFoundError, ValidationError
from coliving.schemas.ical import (
    CleanupResult,
    FeedDeleteResult,
    FeedSyncResult,
    ICalFeedCreate,
    ICalFeedInDB,
    SyncReport,
)
from coliving.services.ical_sync import ical_sync_engine

router = APIRouter(tags=["ical"])


@router.post("/apartments/{apartment_id}/ical-feeds", response_model=ICalFeedInDB, status_code=201)
async def add_feed(
    apartment_id: int,
    feed: ICalFeedCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Register an external calendar feed on an apartment.

    The feed name tags every calendar row the feed produces, so it must be
    unique per apartment.
    """
    try:
        return await ical_sync_engine.add_feed(db, apartment_id, feed)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/apartments/{apartment_id}/ical-feeds", response_model=List[ICalFeedInDB])
async def list_feeds(
    apartment_id: int,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """List an apartment's feeds."""
    return await ical_sync_engine.list_feeds(db, apartment_id, include_inactive)


@router.post("/apartments/{apartment_id}/ical-feeds/sync", response_model=SyncReport)
async def sync_apartment_feeds(
    apartment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Sync every active feed of an apartment.

    Individual feed failures are reported in the results; the request itself
    succeeds.
    """
    try:
        return await ical_sync_engine.sync_all_feeds(db, apartment_id)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/ical-feeds/cleanup", response_model=CleanupResult)
async def cleanup_orphaned(
    apartment_id: Optional[int] = Query(default=None, description="Limit cleanup to one apartment"),
    db: AsyncSession = Depends(get_db),
):
    """Delete calendar rows left behind by feeds that no longer exist."""
    try:
        return await ical_sync_engine.cleanup_orphaned(db, apartment_id)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to clean up orphaned availability: {str(e)}",
        )


@router.post("/ical-feeds/{feed_id}/sync", response_model=FeedSyncResult)
async def sync_feed(
    feed_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Sync one feed now."""
    try:
        return await ical_sync_engine.sync_feed(db, feed_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/ical-feeds/{feed_id}", response_model=FeedDeleteResult)
async def delete_feed(
    feed_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Delete a feed and the calendar rows it produced."""
    try:
        return await ical_sync_engine.delete_feed(db, feed_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
