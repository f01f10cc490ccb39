"""Split-stay search schemas."""
from pydantic import BaseModel
from typing import List
from datetime import date
from decimal import Decimal


class SplitStaySegment(BaseModel):
    """One proposed apartment leg."""

    apartment_id: int
    apartment_title: str
    check_in: date
    check_out: date
    nights: int
    price: Decimal


class SplitStayOption(BaseModel):
    """A ranked combination of contiguous segments covering the request."""

    segments: List[SplitStaySegment]
    segment_count: int
    total_price: Decimal
