"""Booking and booking segment models."""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Numeric, Boolean, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coliving.core.database import Base

BOOKING_CONFIRMED = "confirmed"
BOOKING_CHECKED_IN = "checked_in"
BOOKING_CHECKED_OUT = "checked_out"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (BOOKING_CONFIRMED, BOOKING_CHECKED_IN, BOOKING_CHECKED_OUT, BOOKING_CANCELLED)
OCCUPYING_STATUSES = (BOOKING_CONFIRMED, BOOKING_CHECKED_IN)

PAYMENT_PENDING = "pending"


class Booking(Base):
    """A reservation over the half-open range [check_in_date, check_out_date)."""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    # First segment's apartment for split stays
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    guest_name = Column(String, nullable=False)
    guest_email = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    guest_count = Column(Integer, nullable=False, default=1)
    special_instructions = Column(String, nullable=True)
    booking_source = Column(String, nullable=False, default="direct")  # direct, airbnb, booking.com, vrbo, other
    booking_reference = Column(String, nullable=True)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=True)
    status = Column(String, nullable=False, default=BOOKING_CONFIRMED)
    payment_status = Column(String, nullable=False, default=PAYMENT_PENDING)  # pending, paid, failed, refunded
    is_split_stay = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    apartment = relationship("Apartment")
    segments = relationship(
        "BookingSegment",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingSegment.segment_order",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_bookings_apartment_dates", "apartment_id", "check_in_date", "check_out_date"),
    )

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    def footprint(self):
        """(apartment_id, check_in, check_out) ranges this booking occupies."""
        if self.is_split_stay and self.segments:
            return [(s.apartment_id, s.check_in_date, s.check_out_date) for s in self.segments]
        return [(self.apartment_id, self.check_in_date, self.check_out_date)]


class BookingSegment(Base):
    """One apartment leg of a split-stay booking."""

    __tablename__ = "apartment_booking_segments"

    id = Column(Integer, primary_key=True, index=True)
    parent_booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=False, index=True)
    segment_order = Column(Integer, nullable=False)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    segment_price = Column(Numeric(10, 2), nullable=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    booking = relationship("Booking", back_populates="segments")
    apartment = relationship("Apartment")

    __table_args__ = (
        Index("ix_segments_apartment_dates", "apartment_id", "check_in_date", "check_out_date"),
    )
