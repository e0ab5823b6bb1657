"""Payment Models"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"
    STRIPE = "stripe"
    PAYPAL = "paypal"
    CASH = "cash"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Methods settled outside any gateway, recorded as completed immediately
OFFLINE_METHODS = {PaymentMethod.CASH, PaymentMethod.BANK_TRANSFER}


class PaymentCreate(BaseModel):
    invoice: str
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class PaymentUpdate(BaseModel):
    reference: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class PaymentInitiateRequest(BaseModel):
    invoice_id: str
    method: PaymentMethod
    amount: float = Field(..., gt=0)
    payer_email: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class Payment(BaseModel):
    id: str = Field(alias="_id")
    payment_number: str
    invoice: str
    client: str
    amount: float
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    processor_refs: Dict[str, Any] = {}
    payment_date: datetime
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
