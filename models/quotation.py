"""Quotation Models"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from models.line_item import LineItem, LineItemInput


class QuotationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CONVERTED = "converted"


# Once in one of these states the priced content is frozen
LOCKED_QUOTATION_STATUSES = {QuotationStatus.ACCEPTED.value, QuotationStatus.CONVERTED.value}


class QuotationCreate(BaseModel):
    project: str
    items: List[LineItemInput] = []
    tax: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    valid_until: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class QuotationUpdate(BaseModel):
    items: Optional[List[LineItemInput]] = None
    tax: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    valid_until: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class QuotationReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=400)


class ConvertToInvoiceRequest(BaseModel):
    due_date: Optional[datetime] = None


class Quotation(BaseModel):
    id: str = Field(alias="_id")
    quotation_number: str
    project: str
    client: str
    items: List[LineItem] = []
    subtotal: float
    tax: float = 0
    discount: float = 0
    total_amount: float
    status: QuotationStatus = QuotationStatus.PENDING
    valid_until: datetime
    notes: Optional[str] = None
    converted_to_invoice: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
