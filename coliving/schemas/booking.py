"""Booking schemas."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal
from datetime import datetime, date
from decimal import Decimal

BookingStatus = Literal["confirmed", "checked_in", "checked_out", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
BookingSource = Literal["direct", "airbnb", "booking.com", "vrbo", "other"]


class GuestInfo(BaseModel):
    """Guest details shared by plain and split-stay bookings."""

    guest_name: str
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_count: int = Field(default=1, ge=1)
    special_instructions: Optional[str] = None


class BookingCreate(GuestInfo):
    """Schema for creating a single-apartment booking."""

    apartment_id: int
    check_in_date: date
    check_out_date: date
    status: BookingStatus = "confirmed"
    payment_status: PaymentStatus = "pending"
    booking_source: BookingSource = "direct"
    booking_reference: Optional[str] = None
    total_amount: Optional[Decimal] = None


class BookingUpdate(BaseModel):
    """Schema for patching a booking."""

    apartment_id: Optional[int] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_count: Optional[int] = Field(default=None, ge=1)
    special_instructions: Optional[str] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None
    booking_source: Optional[BookingSource] = None
    booking_reference: Optional[str] = None
    total_amount: Optional[Decimal] = None


class SegmentCreate(BaseModel):
    """One apartment leg of a split-stay request."""

    apartment_id: int
    check_in_date: date
    check_out_date: date
    segment_price: Decimal = Field(ge=0)
    notes: Optional[str] = None


class SplitStayBookingCreate(BaseModel):
    """Schema for booking a split stay."""

    guest: GuestInfo
    segments: List[SegmentCreate]


class SplitStayBookingUpdate(BaseModel):
    """Schema for replacing the segments of a booking."""

    guest: GuestInfo
    segments: List[SegmentCreate]
    status: Optional[BookingStatus] = None
    booking_source: Optional[BookingSource] = None
    booking_reference: Optional[str] = None


class SegmentInDB(BaseModel):
    """Schema for a stored booking segment."""

    id: int
    apartment_id: int
    segment_order: int
    check_in_date: date
    check_out_date: date
    segment_price: Decimal
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class BookingInDB(BaseModel):
    """Schema for a booking from the database."""

    id: int
    apartment_id: int
    guest_name: str
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_count: int
    special_instructions: Optional[str] = None
    booking_source: str
    booking_reference: Optional[str] = None
    check_in_date: date
    check_out_date: date
    total_amount: Optional[Decimal] = None
    status: str
    payment_status: str
    is_split_stay: bool
    segments: List[SegmentInDB] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
