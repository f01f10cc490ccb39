"""Booking lifecycle: ledger writes with the calendar cache kept in step.

Every mutation commits the bookings ledger first and then mirrors the change
into the calendar. Calendar writes are best effort: a failure is logged and
the already-committed booking stands. ``reconcile_calendar`` re-derives the
ledger-owned calendar rows when the two have drifted.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.dates import date_range, validate_range
from coliving.core.exceptions import (
    ColivingError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from coliving.models.apartment import Apartment
from coliving.models.booking import (
    Booking,
    BookingSegment,
    BOOKING_CONFIRMED,
    OCCUPYING_STATUSES,
    PAYMENT_PENDING,
)
from coliving.models.calendar_day import CalendarDay, DAY_AVAILABLE, DAY_BOOKED, DIRECT_SOURCE
from coliving.schemas.availability import ReconcileResult
from coliving.schemas.booking import BookingCreate, BookingUpdate, GuestInfo, SegmentCreate
from coliving.services.availability_store import AvailabilityStore, availability_store

logger = logging.getLogger(__name__)

FOOTPRINT_FIELDS = ("apartment_id", "check_in_date", "check_out_date")
REQUIRED_FIELDS = ("guest_name", "guest_count", "status", "payment_status", "booking_source") + FOOTPRINT_FIELDS


class BookingLifecycleManager:
    """Creates, updates and deletes bookings and mirrors them into the calendar."""

    def __init__(self, store: AvailabilityStore):
        self.store = store
        # Called with the apartment ids whose direct dates were just released
        self.release_hooks: List[Callable[[Set[int]], None]] = []

    async def get(self, db: AsyncSession, booking_id: int) -> Booking:
        """Get a booking with its segments or raise NotFoundError."""
        result = await db.execute(select(Booking).where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()

        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")

        return booking

    async def create(self, db: AsyncSession, data: BookingCreate) -> Booking:
        """
        Create a single-apartment booking.

        Occupying bookings (confirmed, checked in) are checked against the
        ledger and the calendar while the apartment row is locked, then their
        dates are marked booked.

        Raises:
            ValidationError: Bad date range or unknown apartment
            ConflictError: Dates already taken
        """
        validate_range(data.check_in_date, data.check_out_date)
        occupying = data.status in OCCUPYING_STATUSES

        try:
            await self._get_apartment(db, data.apartment_id, lock=occupying)
            if occupying:
                await self._assert_available(
                    db, data.apartment_id, data.check_in_date, data.check_out_date
                )

            booking = Booking(**data.model_dump(), is_split_stay=False)
            db.add(booking)
            await db.commit()
        except (ColivingError, SQLAlchemyError):
            await db.rollback()
            raise

        await db.refresh(booking)
        logger.info(
            f"Created booking {booking.id} for apartment {booking.apartment_id} "
            f"({booking.check_in_date} -> {booking.check_out_date}, {booking.status})"
        )

        if booking.is_occupying:
            await self._sync_calendar(db, booking=booking, occupy=booking.footprint())

        return booking

    async def update(self, db: AsyncSession, booking_id: int, patch: BookingUpdate) -> Booking:
        """
        Patch a booking.

        When the dates, apartment or status change, the old footprint is
        released before the new one is occupied, in a single calendar write.
        Metadata-only patches never touch the calendar.

        Raises:
            NotFoundError: Unknown booking
            ValidationError: Bad range, unknown apartment, or a date change on a split stay
            ConflictError: New dates already taken
        """
        booking = await self.get(db, booking_id)
        changes = patch.model_dump(exclude_unset=True)

        for field in REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise ValidationError(f"Field '{field}' cannot be cleared")

        footprint_changed = any(
            field in changes and changes[field] != getattr(booking, field)
            for field in FOOTPRINT_FIELDS
        )
        status_changed = "status" in changes and changes["status"] != booking.status

        if footprint_changed and booking.is_split_stay:
            raise ValidationError(
                f"Booking {booking_id} is a split stay; change its segments instead"
            )

        old_footprint = booking.footprint() if booking.is_occupying else []
        was_occupying = booking.is_occupying
        new_apartment_id = changes.get("apartment_id", booking.apartment_id)
        new_check_in = changes.get("check_in_date", booking.check_in_date)
        new_check_out = changes.get("check_out_date", booking.check_out_date)
        new_status = changes.get("status", booking.status)

        try:
            if footprint_changed:
                validate_range(new_check_in, new_check_out)

            if booking.is_split_stay and new_status in OCCUPYING_STATUSES and not was_occupying:
                await self._lock_segment_apartments(db, booking.segments)
                for segment in booking.segments:
                    await self._assert_available(
                        db,
                        segment.apartment_id,
                        segment.check_in_date,
                        segment.check_out_date,
                        exclude_booking_id=booking.id,
                    )
            elif new_status in OCCUPYING_STATUSES and (footprint_changed or not was_occupying):
                await self._get_apartment(db, new_apartment_id, lock=True)
                await self._assert_available(
                    db, new_apartment_id, new_check_in, new_check_out, exclude_booking_id=booking.id
                )
            elif footprint_changed and "apartment_id" in changes:
                await self._get_apartment(db, new_apartment_id)

            for field, value in changes.items():
                setattr(booking, field, value)

            await db.commit()
        except (ColivingError, SQLAlchemyError):
            await db.rollback()
            raise

        await db.refresh(booking)
        logger.info(f"Updated booking {booking.id}: {', '.join(sorted(changes)) or 'no fields'}")

        if footprint_changed or status_changed:
            new_footprint = booking.footprint() if booking.is_occupying else []
            if old_footprint or new_footprint:
                await self._sync_calendar(
                    db, booking=booking, release=old_footprint, occupy=new_footprint
                )

        return booking

    async def delete(self, db: AsyncSession, booking_id: int) -> None:
        """
        Delete a booking and release every date it covered.

        Raises:
            NotFoundError: Unknown booking
        """
        booking = await self.get(db, booking_id)
        footprint = booking.footprint()

        try:
            await db.delete(booking)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            raise

        logger.info(f"Deleted booking {booking_id}")
        await self._sync_calendar(db, release=footprint)

    async def create_with_segments(
        self,
        db: AsyncSession,
        guest_info: GuestInfo,
        segments: Sequence[SegmentCreate],
    ) -> Booking:
        """
        Book a split stay across several apartments.

        The booking and its segments are inserted in one transaction, so a
        failing segment insert leaves no booking behind. Each segment then
        occupies its own apartment's dates.

        Args:
            db: Database session
            guest_info: Guest details
            segments: Contiguous segments, in stay order

        Returns:
            The confirmed booking with payment pending

        Raises:
            ValidationError: Fewer than 2 segments, gaps/overlaps, unknown apartment
            ConflictError: A segment's dates are already taken
        """
        self._validate_segments(segments, min_count=2)

        try:
            await self._lock_segment_apartments(db, segments)
            for segment in segments:
                await self._assert_available(
                    db, segment.apartment_id, segment.check_in_date, segment.check_out_date
                )

            booking = Booking(
                apartment_id=segments[0].apartment_id,
                **guest_info.model_dump(),
                check_in_date=segments[0].check_in_date,
                check_out_date=segments[-1].check_out_date,
                booking_source="direct",
                total_amount=self._total(segments),
                status=BOOKING_CONFIRMED,
                payment_status=PAYMENT_PENDING,
                is_split_stay=True,
                segments=self._build_segments(segments),
            )
            db.add(booking)
            await db.commit()
        except (ColivingError, SQLAlchemyError):
            await db.rollback()
            raise

        await db.refresh(booking)
        logger.info(
            f"Created split-stay booking {booking.id} with {len(segments)} segments "
            f"({booking.check_in_date} -> {booking.check_out_date}, total {booking.total_amount})"
        )

        await self._sync_calendar(db, booking=booking, occupy=booking.footprint())
        return booking

    async def update_with_segments(
        self,
        db: AsyncSession,
        booking_id: int,
        guest_info: GuestInfo,
        segments: Sequence[SegmentCreate],
        status: Optional[str] = None,
        booking_source: Optional[str] = None,
        booking_reference: Optional[str] = None,
    ) -> Booking:
        """
        Replace a booking's guest details and segments.

        Existing segments are deleted and the new list inserted; apartment
        composition may change arbitrarily. A single segment turns the
        booking back into a plain booking.

        Raises:
            NotFoundError: Unknown booking
            ValidationError: No segments, gaps/overlaps, unknown apartment
            ConflictError: A segment's dates are already taken
        """
        booking = await self.get(db, booking_id)
        self._validate_segments(segments, min_count=1)

        old_footprint = booking.footprint() if booking.is_occupying else []
        new_status = status or booking.status
        is_split_stay = len(segments) > 1

        try:
            await self._lock_segment_apartments(db, segments)
            if new_status in OCCUPYING_STATUSES:
                for segment in segments:
                    await self._assert_available(
                        db,
                        segment.apartment_id,
                        segment.check_in_date,
                        segment.check_out_date,
                        exclude_booking_id=booking.id,
                    )

            for field, value in guest_info.model_dump().items():
                setattr(booking, field, value)
            booking.apartment_id = segments[0].apartment_id
            booking.check_in_date = segments[0].check_in_date
            booking.check_out_date = segments[-1].check_out_date
            booking.total_amount = self._total(segments)
            booking.status = new_status
            booking.is_split_stay = is_split_stay
            if booking_source:
                booking.booking_source = booking_source
            if booking_reference is not None:
                booking.booking_reference = booking_reference

            booking.segments.clear()
            await db.flush()
            if is_split_stay:
                booking.segments.extend(self._build_segments(segments))

            await db.commit()
        except (ColivingError, SQLAlchemyError):
            await db.rollback()
            raise

        await db.refresh(booking)
        logger.info(f"Replaced segments of booking {booking.id} ({len(segments)} segments)")

        new_footprint = booking.footprint() if booking.is_occupying else []
        await self._sync_calendar(db, booking=booking, release=old_footprint, occupy=new_footprint)
        return booking

    async def reconcile_calendar(self, db: AsyncSession, apartment_id: int) -> ReconcileResult:
        """
        Re-derive the ledger-owned ("direct") calendar rows of one apartment.

        Dates covered by an occupying booking are marked booked; "direct"
        booked rows with no booking behind them are released. Rows written by
        feeds or manual blocks are only overwritten where the ledger says the
        date is occupied.
        """
        await self._get_apartment(db, apartment_id)

        occupied = set()
        for check_in, check_out in await self.store.ledger_ranges(db, apartment_id):
            occupied.update(date_range(check_in, check_out))

        result = await db.execute(
            select(CalendarDay.date).where(
                and_(
                    CalendarDay.apartment_id == apartment_id,
                    CalendarDay.source_tag == DIRECT_SOURCE,
                    CalendarDay.status == DAY_BOOKED,
                )
            )
        )
        stale = [day for day in result.scalars().all() if day not in occupied]

        try:
            await self.store.set_bulk(db, apartment_id, stale, DAY_AVAILABLE, source_tag=DIRECT_SOURCE)
            await self.store.set_bulk(db, apartment_id, occupied, DAY_BOOKED, source_tag=DIRECT_SOURCE)
            await db.commit()
        except (PersistenceError, SQLAlchemyError):
            await db.rollback()
            raise

        logger.info(
            f"Reconciled apartment {apartment_id}: {len(occupied)} booked, {len(stale)} released"
        )
        return ReconcileResult(
            apartment_id=apartment_id,
            dates_booked=len(occupied),
            dates_released=len(stale),
        )

    async def _get_apartment(
        self, db: AsyncSession, apartment_id: int, lock: bool = False
    ) -> Apartment:
        query = select(Apartment).where(Apartment.id == apartment_id)
        if lock:
            # Serializes concurrent bookings of the same apartment until commit
            query = query.with_for_update()
        result = await db.execute(query)
        apartment = result.scalar_one_or_none()

        if not apartment:
            raise ValidationError(f"Apartment {apartment_id} not found")

        return apartment

    async def _lock_segment_apartments(
        self, db: AsyncSession, segments: Sequence[SegmentCreate]
    ) -> None:
        # Fixed lock order across requests
        for apartment_id in sorted({s.apartment_id for s in segments}):
            await self._get_apartment(db, apartment_id, lock=True)

    async def _assert_available(
        self,
        db: AsyncSession,
        apartment_id: int,
        check_in: date,
        check_out: date,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        conflicts = await self.store.conflicting_dates(
            db, apartment_id, check_in, check_out, exclude_booking_id
        )
        if conflicts:
            raise ConflictError(
                f"Apartment {apartment_id} is not available from {check_in} to {check_out} "
                f"({len(conflicts)} unavailable dates, first {conflicts[0]})"
            )

    def _validate_segments(self, segments: Sequence[SegmentCreate], min_count: int) -> None:
        if len(segments) < min_count:
            raise ValidationError(
                f"At least {min_count} segment{'s' if min_count > 1 else ''} required, "
                f"got {len(segments)}"
            )

        for segment in segments:
            validate_range(segment.check_in_date, segment.check_out_date)

        for index, (current, following) in enumerate(zip(segments, segments[1:])):
            if current.check_out_date != following.check_in_date:
                kind = "gap" if current.check_out_date < following.check_in_date else "overlap"
                raise ValidationError(
                    f"Segments {index} and {index + 1} must be back-to-back: {kind} between "
                    f"{current.check_out_date} and {following.check_in_date}"
                )

    def _build_segments(self, segments: Sequence[SegmentCreate]) -> List[BookingSegment]:
        return [
            BookingSegment(
                apartment_id=segment.apartment_id,
                segment_order=order,
                check_in_date=segment.check_in_date,
                check_out_date=segment.check_out_date,
                segment_price=segment.segment_price,
                notes=segment.notes,
            )
            for order, segment in enumerate(segments)
        ]

    @staticmethod
    def _total(segments: Sequence[SegmentCreate]) -> Decimal:
        return sum((Decimal(s.segment_price) for s in segments), Decimal("0"))

    async def _sync_calendar(
        self,
        db: AsyncSession,
        booking: Optional[Booking] = None,
        release: Iterable[Tuple[int, date, date]] = (),
        occupy: Iterable[Tuple[int, date, date]] = (),
    ) -> bool:
        """
        Mirror a committed ledger change into the calendar.

        Releases are written before occupations so that dates present in
        both end up booked. Failures are logged and swallowed; the booking is
        detached first so a rollback here cannot expire it for the caller.
        """
        if booking is not None:
            db.expunge(booking)

        release = list(release)
        try:
            for apartment_id, check_in, check_out in release:
                await self.store.set_bulk(
                    db, apartment_id, date_range(check_in, check_out), DAY_AVAILABLE,
                    source_tag=DIRECT_SOURCE,
                )
            for apartment_id, check_in, check_out in occupy:
                await self.store.set_bulk(
                    db, apartment_id, date_range(check_in, check_out), DAY_BOOKED,
                    source_tag=DIRECT_SOURCE,
                )
            await db.commit()
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(f"Calendar update failed, ledger remains authoritative: {e}", exc_info=True)
            await db.rollback()
            return False

        if release:
            released = {apartment_id for apartment_id, _, _ in release}
            for hook in self.release_hooks:
                hook(released)

        return True


# Singleton instance
booking_manager = BookingLifecycleManager(availability_store)
