"""Apartment model."""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coliving.core.database import Base

APARTMENT_AVAILABLE = "available"


class Apartment(Base):
    """A bookable apartment. Read-only from the engine's point of view."""

    __tablename__ = "apartments"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)  # Monthly price
    status = Column(String, nullable=False, default=APARTMENT_AVAILABLE)  # available, occupied, maintenance
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    calendar_days = relationship("CalendarDay", back_populates="apartment", cascade="all, delete-orphan")
    ical_feeds = relationship("ICalFeed", back_populates="apartment", cascade="all, delete-orphan")
