"""iCal feed model."""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from coliving.core.database import Base


class ICalFeed(Base):
    """An external calendar feed whose events block an apartment's dates."""

    __tablename__ = "apartment_ical_feeds"

    id = Column(Integer, primary_key=True, index=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id", ondelete="CASCADE"), nullable=False, index=True)
    feed_name = Column(String, nullable=False)  # Ownership tag written onto every synced calendar row
    ical_url = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    apartment = relationship("Apartment", back_populates="ical_feeds")

    __table_args__ = (
        UniqueConstraint("apartment_id", "feed_name", name="uq_ical_feed_apartment_name"),
    )
