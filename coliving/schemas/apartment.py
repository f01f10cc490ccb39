"""Apartment schemas."""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal


class ApartmentInDB(BaseModel):
    """Schema for an apartment from the catalog."""

    id: int
    title: str
    price: Decimal
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
