"""Calendar day model."""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coliving.core.database import Base

DAY_AVAILABLE = "available"
DAY_BOOKED = "booked"
DAY_BLOCKED = "blocked"
OCCUPIED_DAY_STATUSES = (DAY_BOOKED, DAY_BLOCKED)

# Source tag for rows derived from the bookings ledger. Feed rows carry the feed name.
DIRECT_SOURCE = "direct"


class CalendarDay(Base):
    """Cached occupancy of one apartment on one date."""

    __tablename__ = "apartment_availability"

    id = Column(Integer, primary_key=True, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default=DAY_AVAILABLE)  # available, booked, blocked
    source_tag = Column(String, nullable=True, index=True)  # "direct", a feed name, or NULL for manual blocks
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    apartment = relationship("Apartment", back_populates="calendar_days")

    __table_args__ = (
        UniqueConstraint("apartment_id", "date", name="uq_availability_apartment_date"),
        Index("ix_availability_apartment_source", "apartment_id", "source_tag"),
    )
