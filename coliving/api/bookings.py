"""Booking endpoints."""
from datetime import date
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coliving.core.database import get_db
from coliving.core.exceptions import ConflictError, NotFoundError, ValidationError
from coliving.schemas.booking import (
    BookingCreate,
    BookingInDB,
    BookingUpdate,
    SplitStayBookingCreate,
    SplitStayBookingUpdate,
)
from coliving.schemas.split_stay import SplitStayOption
from coliving.services.booking_manager import booking_manager
from coliving.services.split_stay import split_stay_search

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/split-stay/options", response_model=List[SplitStayOption])
async def find_split_stay_options(
    start: date = Query(..., description="Requested check-in"),
    end: date = Query(..., description="Requested check-out"),
    max_segments: int = Query(default=3, ge=2, le=6, description="Maximum apartments per option"),
    db: AsyncSession = Depends(get_db),
):
    """
    Find combinations of apartments that together cover a stay.

    Options are ordered by number of apartments, then total price. An empty
    list means no combination exists.

    Args:
        start: Requested check-in
        end: Requested check-out
        max_segments: Maximum apartments per option
        db: Database session

    Returns:
        Up to 10 ranked options
    """
    try:
        return await split_stay_search.find_split_stay_options(db, start, end, max_segments)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/split-stay", response_model=BookingInDB, status_code=201)
async def create_split_stay_booking(
    request: SplitStayBookingCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Book a split stay.

    Segments must be back-to-back: each segment's check-out is the next
    segment's check-in.
    """
    try:
        return await booking_manager.create_with_segments(db, request.guest, request.segments)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("", response_model=BookingInDB, status_code=201)
async def create_booking(
    booking: BookingCreate,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a booking for a single apartment.

    Confirmed and checked-in bookings mark their dates as booked. A 409 means
    the dates were taken in the meantime; refresh availability and retry.
    """
    try:
        return await booking_manager.create(db, booking)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{booking_id}", response_model=BookingInDB)
async def get_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a booking with its segments."""
    try:
        return await booking_manager.get(db, booking_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{booking_id}", response_model=BookingInDB)
async def update_booking(
    booking_id: int,
    booking_update: BookingUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Update a booking.

    Args:
        booking_id: Booking ID
        booking_update: Fields to update
        db: Database session

    Returns:
        Updated booking
    """
    try:
        return await booking_manager.update(db, booking_id, booking_update)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/{booking_id}/segments", response_model=BookingInDB)
async def replace_booking_segments(
    booking_id: int,
    request: SplitStayBookingUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Replace a booking's guest details and segments."""
    try:
        return await booking_manager.update_with_segments(
            db,
            booking_id,
            request.guest,
            request.segments,
            status=request.status,
            booking_source=request.booking_source,
            booking_reference=request.booking_reference,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{booking_id}", status_code=204)
async def delete_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a booking and release its dates.

    Args:
        booking_id: Booking ID
        db: Database session
    """
    try:
        await booking_manager.delete(db, booking_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
