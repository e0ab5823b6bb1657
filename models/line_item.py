"""Line items shared by quotations and invoices"""

from pydantic import BaseModel, Field
from typing import Optional


class LineItemInput(BaseModel):
    """Line item as supplied by the caller. Any total sent is ignored."""
    description: str = Field(..., min_length=1, max_length=500)
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    total: Optional[float] = None


class LineItem(BaseModel):
    """Line item as persisted, with its recomputed total"""
    description: str
    quantity: float
    unit_price: float
    total: float
