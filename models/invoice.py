"""Invoice Models"""

from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from models.line_item import LineItem, LineItemInput
from models.payment import PaymentMethod


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


# Statuses that still carry an open balance
OUTSTANDING_STATUSES = [
    InvoiceStatus.SENT.value,
    InvoiceStatus.PARTIALLY_PAID.value,
    InvoiceStatus.OVERDUE.value,
]


class InvoiceFromQuotation(BaseModel):
    """Create an invoice from an accepted quotation"""
    quotation: Optional[str] = None
    due_date: Optional[datetime] = None


class InvoiceCreate(BaseModel):
    """Create a standalone invoice"""
    client: str
    project_title: str = Field(..., min_length=1, max_length=200)
    items: List[LineItemInput]
    tax: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    due_date: datetime
    notes: Optional[str] = Field(None, max_length=500)


class InvoiceUpdate(BaseModel):
    project_title: Optional[str] = Field(None, min_length=1, max_length=200)
    items: Optional[List[LineItemInput]] = None
    tax: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    due_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class InvoiceCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=400)


class MarkPaidRequest(BaseModel):
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None


class Invoice(BaseModel):
    id: str = Field(alias="_id")
    invoice_number: str
    client: str
    quotation: Optional[str] = None
    project_title: str
    items: List[LineItem] = []
    subtotal: float
    tax: float = 0
    discount: float = 0
    total_amount: float
    paid_amount: float = 0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    due_date: datetime
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def remaining_balance(self) -> float:
        return round(self.total_amount - self.paid_amount, 2)

    class Config:
        populate_by_name = True
