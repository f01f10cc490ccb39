"""iCal feed schemas."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class ICalFeedCreate(BaseModel):
    """Schema for registering a feed on an apartment."""

    feed_name: str = Field(min_length=1, max_length=100)
    ical_url: str
    is_active: bool = True


class ICalFeedInDB(BaseModel):
    """Schema for a feed from the database."""

    id: int
    apartment_id: int
    feed_name: str
    ical_url: str
    is_active: bool
    last_sync: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FeedSyncResult(BaseModel):
    """Outcome of syncing one feed."""

    feed_id: int
    feed_name: str
    success: bool
    events_processed: int = 0
    events_skipped: int = 0
    dates_booked: int = 0
    dates_cleared: int = 0
    error: Optional[str] = None


class SyncReport(BaseModel):
    """Aggregate outcome of syncing several feeds."""

    apartment_id: int
    results: List[FeedSyncResult]

    @property
    def failed(self) -> List[FeedSyncResult]:
        return [r for r in self.results if not r.success]


class CleanupResult(BaseModel):
    """Outcome of an orphaned-row cleanup."""

    deleted_count: int
    orphaned_feeds: List[str]


class FeedDeleteResult(BaseModel):
    """Outcome of deleting a feed together with its calendar rows."""

    feed_id: int
    feed_name: str
    availability_deleted: int
