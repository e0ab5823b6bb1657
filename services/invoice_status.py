"""
Derived invoice status.

Called explicitly at the end of every operation that changes `paid_amount`.
Caller-driven statuses (`sent`, `cancelled`, an explicit `overdue`) are left
alone until the next such change.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from models.invoice import InvoiceStatus
from services.money import round_money


def derive_invoice_status(
    paid_amount: float,
    total_amount: float,
    due_date: datetime,
    now: datetime,
    current_status: str
) -> str:
    if paid_amount <= 0:
        if now > due_date and current_status != InvoiceStatus.CANCELLED.value:
            return InvoiceStatus.OVERDUE.value
        if current_status == InvoiceStatus.OVERDUE.value and now <= due_date:
            return InvoiceStatus.SENT.value
        return current_status

    if round_money(paid_amount - total_amount) >= 0:
        return InvoiceStatus.PAID.value

    return InvoiceStatus.PARTIALLY_PAID.value


def derived_payment_fields(invoice: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Fields to $set after `paid_amount` changed: the new status and, when the
    invoice becomes paid, a `paid_date` if none was recorded yet.
    """
    new_status = derive_invoice_status(
        invoice.get("paid_amount", 0),
        invoice["total_amount"],
        invoice["due_date"],
        now,
        invoice["status"]
    )
    fields = {"status": new_status}
    paid_date: Optional[datetime] = invoice.get("paid_date")
    if new_status == InvoiceStatus.PAID.value and paid_date is None:
        fields["paid_date"] = now
    return fields
