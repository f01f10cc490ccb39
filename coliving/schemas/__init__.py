"""API schemas."""
from coliving.schemas.apartment import ApartmentInDB
from coliving.schemas.availability import (
    CalendarDayInDB,
    CalendarResponse,
    AvailabilityCheck,
    ReconcileResult,
)
from coliving.schemas.booking import (
    GuestInfo,
    BookingCreate,
    BookingUpdate,
    SegmentCreate,
    SplitStayBookingCreate,
    SplitStayBookingUpdate,
    SegmentInDB,
    BookingInDB,
)
from coliving.schemas.split_stay import SplitStaySegment, SplitStayOption
from coliving.schemas.ical import (
    ICalFeedCreate,
    ICalFeedInDB,
    FeedSyncResult,
    SyncReport,
    CleanupResult,
    FeedDeleteResult,
)

__all__ = [
    "ApartmentInDB",
    "CalendarDayInDB",
    "CalendarResponse",
    "AvailabilityCheck",
    "ReconcileResult",
    "GuestInfo",
    "BookingCreate",
    "BookingUpdate",
    "SegmentCreate",
    "SplitStayBookingCreate",
    "SplitStayBookingUpdate",
    "SegmentInDB",
    "BookingInDB",
    "SplitStaySegment",
    "SplitStayOption",
    "ICalFeedCreate",
    "ICalFeedInDB",
    "FeedSyncResult",
    "SyncReport",
    "CleanupResult",
    "FeedDeleteResult",
]
