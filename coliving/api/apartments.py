"""Apartment catalog and availability endpoints."""
from datetime import date, timedelta
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.database import get_db
from coliving.core.exceptions import NotFoundError, ValidationError
from coliving.models.apartment import Apartment
from coliving.schemas.apartment import ApartmentInDB
from coliving.schemas.availability import AvailabilityCheck, CalendarResponse, ReconcileResult
from coliving.services.availability_store import availability_store
from coliving.services.booking_manager import booking_manager
from coliving.services.ical_export import ical_exporter

router = APIRouter(prefix="/apartments", tags=["apartments"])


async def _get_apartment_or_404(db: AsyncSession, apartment_id: int) -> Apartment:
    result = await db.execute(select(Apartment).where(Apartment.id == apartment_id))
    apartment = result.scalar_one_or_none()

    if not apartment:
        raise HTTPException(status_code=404, detail="Apartment not found")

    return apartment


@router.get("", response_model=List[ApartmentInDB])
async def list_apartments(
    skip: int = 0,
    limit: int = 100,
    db: AsyncSession = Depends(get_db),
):
    """
    List apartments in the catalog.

    Args:
        skip: Number of records to skip
        limit: Maximum number of records to return
        db: Database session

    Returns:
        List of apartments
    """
    result = await db.execute(
        select(Apartment).order_by(Apartment.id).offset(skip).limit(limit)
    )
    return result.scalars().all()


@router.get("/{apartment_id}", response_model=ApartmentInDB)
async def get_apartment(
    apartment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a specific apartment by ID."""
    return await _get_apartment_or_404(db, apartment_id)


@router.get("/{apartment_id}/calendar", response_model=CalendarResponse)
async def get_calendar(
    apartment_id: int,
    start: Optional[date] = Query(default=None, description="First date (defaults to today)"),
    end: Optional[date] = Query(default=None, description="Last date, inclusive (defaults to start + 30 days)"),
    db: AsyncSession = Depends(get_db),
):
    """
    Get the cached occupancy calendar of an apartment.

    Only dates with a stored row are returned; missing dates are available.
    """
    if start is None:
        start = date.today()
    if end is None:
        end = start + timedelta(days=30)

    if start > end:
        raise HTTPException(
            status_code=400,
            detail="start must be before or equal to end",
        )

    await _get_apartment_or_404(db, apartment_id)
    days = await availability_store.get_calendar(db, apartment_id, start, end)

    return CalendarResponse(apartment_id=apartment_id, start=start, end=end, days=days)


@router.get("/{apartment_id}/availability", response_model=AvailabilityCheck)
async def check_availability(
    apartment_id: int,
    check_in: date = Query(..., description="Check-in date"),
    check_out: date = Query(..., description="Check-out date (not occupied)"),
    db: AsyncSession = Depends(get_db),
):
    """
    Check whether an apartment can host a stay over [check_in, check_out).

    Both the calendar and the bookings ledger are consulted.
    """
    await _get_apartment_or_404(db, apartment_id)

    try:
        conflicts = await availability_store.conflicting_dates(
            db, apartment_id, check_in, check_out
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AvailabilityCheck(
        apartment_id=apartment_id,
        check_in=check_in,
        check_out=check_out,
        available=not conflicts,
        unavailable_dates=conflicts,
    )


@router.get("/{apartment_id}/calendar.ics")
async def export_calendar(
    apartment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Export the apartment's booked and blocked dates as an iCal feed."""
    try:
        content = await ical_exporter.build_calendar(db, apartment_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return Response(
        content=content,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="apartment-{apartment_id}-availability.ics"',
            "Cache-Control": "public, max-age=3600",
        },
    )


@router.post("/{apartment_id}/reconcile", response_model=ReconcileResult)
async def reconcile_calendar(
    apartment_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Re-derive the booking-owned calendar rows from the bookings ledger.

    Args:
        apartment_id: Apartment ID
        db: Database session

    Returns:
        Counts of dates booked and released
    """
    try:
        return await booking_manager.reconcile_calendar(db, apartment_id)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reconcile calendar: {str(e)}",
        )
