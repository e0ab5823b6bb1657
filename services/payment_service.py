"""
Payment recording

A completed payment and the invoice balance it settles are written as one
logical operation: the payment is inserted first, then the invoice is
incremented with a write conditional on the balance read before. If that
write does not apply, the payment is removed again.
"""

import re
import logging
from datetime import datetime
from typing import Optional, Tuple, List
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from models.common import generate_id
from models.invoice import InvoiceStatus
from models.payment import (
    PaymentCreate,
    PaymentUpdate,
    PaymentMethod,
    PaymentStatus
)
from services.errors import NotFound, StateConflict, ValidationFailed
from services.invoice_status import derived_payment_fields
from services.money import round_money
from services.numbering import next_document_number, PAYMENT_PREFIX

logger = logging.getLogger(__name__)


async def new_payment_doc(
    db: AsyncIOMotorDatabase,
    invoice: dict,
    amount: float,
    payment_method: PaymentMethod,
    status: PaymentStatus,
    now: datetime,
    transaction_id: Optional[str] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None
) -> dict:
    return {
        "_id": generate_id(),
        "payment_number": await next_document_number(db, PAYMENT_PREFIX, now),
        "invoice": invoice["_id"],
        "client": invoice["client"],
        "amount": amount,
        "payment_method": PaymentMethod(payment_method).value,
        "status": PaymentStatus(status).value,
        "transaction_id": transaction_id,
        "reference": reference,
        "notes": notes,
        "metadata": None,
        "processor_refs": {},
        "payment_date": now,
        "created_at": now,
        "updated_at": now
    }


async def get_payment_or_404(db: AsyncIOMotorDatabase, payment_id: str) -> dict:
    payment = await db.payments.find_one({"_id": payment_id})
    if not payment:
        raise NotFound("Payment not found")
    return payment


async def _get_payable_invoice(db: AsyncIOMotorDatabase, invoice_id: str, amount: float) -> dict:
    invoice = await db.invoices.find_one({"_id": invoice_id})
    if not invoice:
        raise NotFound("Invoice not found")

    if invoice["status"] == InvoiceStatus.PAID.value:
        raise StateConflict("Invoice is already paid", status_code=409)
    if invoice["status"] == InvoiceStatus.CANCELLED.value:
        raise StateConflict("Cannot record a payment for a cancelled invoice")

    remaining = round_money(invoice["total_amount"] - invoice.get("paid_amount", 0))
    if amount <= 0:
        raise ValidationFailed("Payment amount must be greater than zero")
    if round_money(amount - remaining) > 0:
        raise ValidationFailed("Payment amount exceeds invoice balance")

    return invoice


async def _increment_invoice(
    db: AsyncIOMotorDatabase,
    invoice: dict,
    amount: float,
    now: datetime
) -> Optional[dict]:
    """
    Add `amount` to the invoice if its balance is still the one we read.
    Returns the updated invoice, or None when another write got there first.
    """
    paid_before = invoice.get("paid_amount", 0)
    paid_after = round_money(paid_before + amount)
    fields = derived_payment_fields({**invoice, "paid_amount": paid_after}, now)
    fields["paid_amount"] = paid_after
    fields["updated_at"] = now

    return await db.invoices.find_one_and_update(
        {
            "_id": invoice["_id"],
            "paid_amount": paid_before,
            "status": {"$nin": [InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value]}
        },
        {"$set": fields},
        return_document=ReturnDocument.AFTER
    )


async def record_payment(
    db: AsyncIOMotorDatabase,
    data: PaymentCreate,
    now: Optional[datetime] = None
) -> Tuple[dict, dict]:
    """Record a completed payment and apply it to the invoice balance"""
    now = now or datetime.utcnow()
    invoice = await _get_payable_invoice(db, data.invoice, data.amount)

    payment_doc = await new_payment_doc(
        db,
        invoice=invoice,
        amount=data.amount,
        payment_method=data.payment_method,
        status=PaymentStatus.COMPLETED,
        now=now,
        transaction_id=data.transaction_id,
        reference=data.reference,
        notes=data.notes
    )
    await db.payments.insert_one(payment_doc)

    try:
        updated_invoice = await _increment_invoice(db, invoice, data.amount, now)
    except Exception:
        await db.payments.delete_one({"_id": payment_doc["_id"]})
        raise

    if not updated_invoice:
        await db.payments.delete_one({"_id": payment_doc["_id"]})
        logger.warning(f"Payment on invoice {invoice['invoice_number']} lost a concurrent update, rolled back")
        raise StateConflict("Invoice balance changed, please retry", status_code=409)

    logger.info(
        f"Payment {payment_doc['payment_number']} of {data.amount} recorded for invoice "
        f"{invoice['invoice_number']} ({updated_invoice['status']})"
    )
    return payment_doc, updated_invoice


async def complete_pending_payment(
    db: AsyncIOMotorDatabase,
    payment_id: str,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[Optional[dict], Optional[dict]]:
    """
    Settle a gateway payment confirmed asynchronously. The pending -> completed
    claim makes repeated confirmations a no-op. The money has been received,
    so the invoice is credited even when it no longer shows a balance.
    """
    now = now or datetime.utcnow()
    payment = await db.payments.find_one_and_update(
        {"_id": payment_id, "status": PaymentStatus.PENDING.value},
        {"$set": {
            "status": PaymentStatus.COMPLETED.value,
            "transaction_id": transaction_id,
            "payment_date": now,
            "updated_at": now
        }},
        return_document=ReturnDocument.AFTER
    )
    if not payment:
        logger.info(f"Payment {payment_id} is not pending, confirmation ignored")
        return None, None

    invoice = await db.invoices.find_one_and_update(
        {"_id": payment["invoice"]},
        {"$inc": {"paid_amount": payment["amount"]}, "$set": {"updated_at": now}},
        return_document=ReturnDocument.AFTER
    )
    if not invoice:
        logger.error(f"Invoice {payment['invoice']} for payment {payment['payment_number']} no longer exists")
        return payment, None

    fields = {"paid_amount": round_money(invoice["paid_amount"])}
    if invoice["status"] != InvoiceStatus.CANCELLED.value:
        fields.update(derived_payment_fields({**invoice, **fields}, now))
    # A later write to paid_amount re-derives these itself
    settled = await db.invoices.find_one_and_update(
        {"_id": invoice["_id"], "paid_amount": invoice["paid_amount"]},
        {"$set": fields},
        return_document=ReturnDocument.AFTER
    )
    invoice = settled or invoice

    logger.info(f"Gateway payment {payment['payment_number']} completed for invoice {invoice['invoice_number']}")
    return payment, invoice


async def fail_pending_payment(db: AsyncIOMotorDatabase, payment_id: str, reason: str) -> Optional[dict]:
    payment = await db.payments.find_one_and_update(
        {"_id": payment_id, "status": PaymentStatus.PENDING.value},
        {"$set": {
            "status": PaymentStatus.FAILED.value,
            "notes": reason,
            "updated_at": datetime.utcnow()
        }},
        return_document=ReturnDocument.AFTER
    )
    if payment:
        logger.warning(f"Payment {payment['payment_number']} failed: {reason}")
    return payment


async def create_pending_payment(
    db: AsyncIOMotorDatabase,
    invoice_id: str,
    amount: float,
    payment_method: PaymentMethod
) -> Tuple[dict, dict]:
    """A gateway payment awaiting confirmation. The invoice is not touched yet."""
    invoice = await _get_payable_invoice(db, invoice_id, amount)
    payment_doc = await new_payment_doc(
        db,
        invoice=invoice,
        amount=amount,
        payment_method=payment_method,
        status=PaymentStatus.PENDING,
        now=datetime.utcnow()
    )
    await db.payments.insert_one(payment_doc)
    return payment_doc, invoice


async def set_processor_refs(db: AsyncIOMotorDatabase, payment_id: str, processor: str, refs: dict) -> dict:
    return await db.payments.find_one_and_update(
        {"_id": payment_id},
        {"$set": {f"processor_refs.{processor}": refs, "updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER
    )


async def list_payments(
    db: AsyncIOMotorDatabase,
    page: int,
    limit: int,
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    client: Optional[str] = None,
    invoice: Optional[str] = None,
    search: Optional[str] = None
) -> Tuple[List[dict], int]:
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"payment_number": pattern},
            {"transaction_id": pattern},
            {"reference": pattern}
        ]
    if status:
        query["status"] = status
    if payment_method:
        query["payment_method"] = payment_method
    if client:
        query["client"] = client
    if invoice:
        query["invoice"] = invoice

    cursor = db.payments.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    payments = await cursor.to_list(length=limit)
    total = await db.payments.count_documents(query)
    return payments, total


async def update_payment(db: AsyncIOMotorDatabase, payment_id: str, data: PaymentUpdate) -> dict:
    """Only descriptive fields can change; amount and status are owned by the ledger"""
    payment = await get_payment_or_404(db, payment_id)

    update_data = {k: v for k, v in data.dict().items() if v is not None}
    if not update_data:
        return payment

    update_data["updated_at"] = datetime.utcnow()
    return await db.payments.find_one_and_update(
        {"_id": payment_id},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )


async def delete_payment(db: AsyncIOMotorDatabase, payment_id: str):
    payment = await get_payment_or_404(db, payment_id)

    if payment["status"] == PaymentStatus.COMPLETED.value:
        raise StateConflict("Cannot delete completed payments. Please refund instead.")

    result = await db.payments.delete_one({"_id": payment_id, "status": {"$ne": PaymentStatus.COMPLETED.value}})
    if result.deleted_count == 0:
        raise StateConflict("Cannot delete completed payments. Please refund instead.")

    logger.info(f"Payment {payment['payment_number']} deleted")
