"""
Invoice lifecycle

Creation (standalone or from an accepted quotation), edits, caller-driven
transitions (send, cancel, mark overdue, mark paid) and deletion guards.
Status changes driven by `paid_amount` go through services.invoice_status.
"""

import re
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple, List
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from config import get_settings
from models.common import generate_id, to_naive_utc
from models.invoice import InvoiceCreate, InvoiceUpdate, InvoiceStatus
from models.payment import PaymentMethod, PaymentStatus
from models.quotation import QuotationStatus
from services.errors import NotFound, StateConflict, ValidationFailed
from services.invoice_status import derived_payment_fields
from services.money import compute_totals, copy_line_items, round_money
from services.numbering import next_document_number, INVOICE_PREFIX
from services.payment_service import new_payment_doc

logger = logging.getLogger(__name__)

CLOSED_STATUSES = [InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value]


async def get_invoice_or_404(db: AsyncIOMotorDatabase, invoice_id: str) -> dict:
    invoice = await db.invoices.find_one({"_id": invoice_id})
    if not invoice:
        raise NotFound("Invoice not found")
    return invoice


def default_due_date(now: datetime) -> datetime:
    return now + timedelta(days=get_settings().invoice_due_days)


async def _link_project(db: AsyncIOMotorDatabase, project_id: str, invoice_id: str, now: datetime):
    """Set the project back-reference unless one is already recorded"""
    await db.projects.update_one(
        {"_id": project_id, "invoice": None},
        {"$set": {"invoice": invoice_id, "updated_at": now}}
    )


async def _new_invoice_doc(
    db: AsyncIOMotorDatabase,
    client: str,
    project_title: str,
    totals: dict,
    due_date: datetime,
    now: datetime,
    created_by: Optional[str],
    quotation: Optional[str] = None,
    notes: Optional[str] = None,
    invoice_id: Optional[str] = None
) -> dict:
    return {
        "_id": invoice_id or generate_id(),
        "invoice_number": await next_document_number(db, INVOICE_PREFIX, now),
        "client": client,
        "quotation": quotation,
        "project_title": project_title,
        **totals,
        "paid_amount": 0,
        "status": InvoiceStatus.DRAFT.value,
        "due_date": due_date,
        "paid_date": None,
        "notes": notes,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now
    }


async def create_standalone_invoice(
    db: AsyncIOMotorDatabase,
    data: InvoiceCreate,
    created_by: Optional[str]
) -> dict:
    if not data.items:
        raise ValidationFailed("Invoice items are required")

    client = await db.clients.find_one({"_id": data.client})
    if not client:
        raise NotFound("Client not found")

    now = datetime.utcnow()
    invoice_doc = await _new_invoice_doc(
        db,
        client=client["_id"],
        project_title=data.project_title.strip(),
        totals=compute_totals(data.items, data.tax, data.discount),
        due_date=to_naive_utc(data.due_date),
        now=now,
        created_by=created_by,
        notes=data.notes
    )
    await db.invoices.insert_one(invoice_doc)

    logger.info(f"Standalone invoice {invoice_doc['invoice_number']} created for client {client['_id']}")
    return invoice_doc


async def create_invoice_from_quotation(
    db: AsyncIOMotorDatabase,
    quotation_id: Optional[str],
    due_date: Optional[datetime],
    created_by: Optional[str],
    now: Optional[datetime] = None
) -> Tuple[dict, dict]:
    """
    Convert an accepted quotation into exactly one invoice.

    The quotation is claimed first with a conditional write, so a second
    conversion can never succeed. If creating the invoice or linking the
    project fails afterwards, the claim is reverted and the invoice removed.
    """
    if not quotation_id:
        raise ValidationFailed("Quotation is required")

    now = now or datetime.utcnow()
    quotation = await db.quotations.find_one({"_id": quotation_id})
    if not quotation:
        raise NotFound("Quotation not found")

    if quotation.get("converted_to_invoice"):
        raise StateConflict("This quotation has already been converted to an invoice")

    if quotation["status"] != QuotationStatus.ACCEPTED.value:
        raise StateConflict("Only accepted quotations can be converted to invoices")

    if not quotation.get("items"):
        raise ValidationFailed("Quotation has no items to invoice")

    project = None
    if quotation.get("project"):
        project = await db.projects.find_one({"_id": quotation["project"]})
    project_title = (project or {}).get("title", "")

    invoice_id = generate_id()
    claimed = await db.quotations.find_one_and_update(
        {
            "_id": quotation_id,
            "status": QuotationStatus.ACCEPTED.value,
            "converted_to_invoice": None
        },
        {"$set": {
            "status": QuotationStatus.CONVERTED.value,
            "converted_to_invoice": invoice_id,
            "updated_at": now
        }},
        return_document=ReturnDocument.AFTER
    )
    if not claimed:
        raise StateConflict("This quotation has already been converted to an invoice")

    invoice_inserted = False
    try:
        # Snapshot of the quoted items, not re-priced
        totals = compute_totals(
            copy_line_items(quotation["items"]),
            quotation.get("tax", 0),
            quotation.get("discount", 0)
        )
        invoice_doc = await _new_invoice_doc(
            db,
            client=quotation["client"],
            project_title=project_title,
            totals=totals,
            due_date=to_naive_utc(due_date) or default_due_date(now),
            now=now,
            created_by=created_by,
            quotation=quotation_id,
            notes=quotation.get("notes"),
            invoice_id=invoice_id
        )
        await db.invoices.insert_one(invoice_doc)
        invoice_inserted = True

        if project:
            await _link_project(db, project["_id"], invoice_id, now)
    except Exception:
        logger.exception(f"Conversion of quotation {quotation_id} failed, reverting")
        if invoice_inserted:
            await db.invoices.delete_one({"_id": invoice_id})
        await db.quotations.update_one(
            {"_id": quotation_id, "converted_to_invoice": invoice_id},
            {"$set": {
                "status": QuotationStatus.ACCEPTED.value,
                "converted_to_invoice": None,
                "updated_at": datetime.utcnow()
            }}
        )
        raise

    logger.info(f"Quotation {quotation['quotation_number']} converted to invoice {invoice_doc['invoice_number']}")
    return invoice_doc, claimed


async def list_invoices(
    db: AsyncIOMotorDatabase,
    page: int,
    limit: int,
    status: Optional[str] = None,
    client: Optional[str] = None,
    search: Optional[str] = None
) -> Tuple[List[dict], int]:
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"invoice_number": pattern}, {"project_title": pattern}]
    if status:
        query["status"] = status
    if client:
        query["client"] = client

    cursor = db.invoices.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    invoices = await cursor.to_list(length=limit)
    total = await db.invoices.count_documents(query)
    return invoices, total


async def get_invoice_payments(db: AsyncIOMotorDatabase, invoice_id: str) -> List[dict]:
    return await db.payments.find({"invoice": invoice_id}).sort("created_at", -1).to_list(length=1000)


async def update_invoice(db: AsyncIOMotorDatabase, invoice_id: str, data: InvoiceUpdate) -> dict:
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice["status"] == InvoiceStatus.PAID.value:
        raise StateConflict("Cannot update a paid invoice")
    if invoice["status"] == InvoiceStatus.CANCELLED.value:
        raise StateConflict("Cannot update a cancelled invoice")

    update_data = {}
    if data.project_title:
        update_data["project_title"] = data.project_title.strip()
    if data.items is not None or data.tax is not None or data.discount is not None:
        if data.items is not None and len(data.items) == 0:
            raise ValidationFailed("An invoice needs at least one item")
        items = data.items if data.items is not None else invoice["items"]
        tax = data.tax if data.tax is not None else invoice.get("tax", 0)
        discount = data.discount if data.discount is not None else invoice.get("discount", 0)
        update_data.update(compute_totals(items, tax, discount))
    if data.due_date is not None:
        update_data["due_date"] = to_naive_utc(data.due_date)
    if data.notes is not None:
        update_data["notes"] = data.notes

    if not update_data:
        return invoice

    now = datetime.utcnow()
    # A new total can move a part-paid invoice across the paid line; an explicit overdue stays
    if (
        "total_amount" in update_data
        and invoice.get("paid_amount", 0) > 0
        and invoice["status"] != InvoiceStatus.OVERDUE.value
    ):
        update_data.update(derived_payment_fields({**invoice, **update_data}, now))

    update_data["updated_at"] = now
    updated = await db.invoices.find_one_and_update(
        {
            "_id": invoice_id,
            "status": {"$nin": CLOSED_STATUSES},
            "paid_amount": invoice.get("paid_amount", 0)
        },
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Invoice changed while updating, please retry", status_code=409)

    logger.info(f"Invoice {invoice['invoice_number']} updated")
    return updated


async def delete_invoice(db: AsyncIOMotorDatabase, invoice_id: str):
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice["status"] == InvoiceStatus.PAID.value:
        raise StateConflict("Cannot delete a paid invoice")

    if await db.payments.find_one({"invoice": invoice_id}):
        raise StateConflict("Cannot delete invoice with existing payments")

    result = await db.invoices.delete_one({"_id": invoice_id, "status": {"$ne": InvoiceStatus.PAID.value}})
    if result.deleted_count == 0:
        raise StateConflict("Cannot delete a paid invoice")

    logger.info(f"Invoice {invoice['invoice_number']} deleted")


async def send_invoice(db: AsyncIOMotorDatabase, invoice_id: str) -> Tuple[dict, dict]:
    """
    Deliver the invoice to its client. Only a draft moves to sent; sending
    again leaves the status untouched.
    """
    invoice = await get_invoice_or_404(db, invoice_id)

    client = await db.clients.find_one({"_id": invoice["client"]})
    if not client:
        raise ValidationFailed("Invoice must have an associated client")
    if not client.get("email"):
        raise ValidationFailed("Client email is required to send invoice")

    if invoice["status"] == InvoiceStatus.DRAFT.value:
        updated = await db.invoices.find_one_and_update(
            {"_id": invoice_id, "status": InvoiceStatus.DRAFT.value},
            {"$set": {"status": InvoiceStatus.SENT.value, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER
        )
        invoice = updated or await get_invoice_or_404(db, invoice_id)
        logger.info(f"Invoice {invoice['invoice_number']} sent to {client['email']}")

    return invoice, client


async def mark_paid(
    db: AsyncIOMotorDatabase,
    invoice_id: str,
    payment_method: Optional[PaymentMethod] = None,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[dict, Optional[dict]]:
    """
    Settle the whole balance at once. When a payment method is given, one
    completed payment for the outstanding balance is recorded.
    """
    now = now or datetime.utcnow()
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice["status"] == InvoiceStatus.PAID.value:
        raise StateConflict("Invoice is already paid")
    if invoice["status"] == InvoiceStatus.CANCELLED.value:
        raise StateConflict("Cannot mark a cancelled invoice as paid")

    updated = await db.invoices.find_one_and_update(
        {"_id": invoice_id, "status": {"$nin": CLOSED_STATUSES}},
        {"$set": {
            "paid_amount": invoice["total_amount"],
            "status": InvoiceStatus.PAID.value,
            "paid_date": now,
            "updated_at": now
        }},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Invoice is already paid")

    payment = None
    balance = round_money(invoice["total_amount"] - invoice.get("paid_amount", 0))
    if payment_method and balance > 0:
        try:
            payment = await new_payment_doc(
                db,
                invoice=updated,
                amount=balance,
                payment_method=payment_method,
                status=PaymentStatus.COMPLETED,
                transaction_id=transaction_id,
                now=now
            )
            await db.payments.insert_one(payment)
        except Exception:
            logger.exception(f"Recording the payment for invoice {invoice['invoice_number']} failed, reverting")
            await db.invoices.update_one(
                {"_id": invoice_id, "status": InvoiceStatus.PAID.value, "paid_amount": invoice["total_amount"]},
                {"$set": {
                    "paid_amount": invoice.get("paid_amount", 0),
                    "status": invoice["status"],
                    "paid_date": invoice.get("paid_date"),
                    "updated_at": datetime.utcnow()
                }}
            )
            raise

    logger.info(f"Invoice {invoice['invoice_number']} marked as paid")
    return updated, payment


async def mark_overdue(db: AsyncIOMotorDatabase, invoice_id: str) -> dict:
    """Explicit admin action, independent of the due date"""
    invoice = await get_invoice_or_404(db, invoice_id)

    if invoice["status"] in CLOSED_STATUSES:
        raise StateConflict(f"Cannot mark a {invoice['status']} invoice as overdue")

    updated = await db.invoices.find_one_and_update(
        {"_id": invoice_id, "status": {"$nin": CLOSED_STATUSES}},
        {"$set": {"status": InvoiceStatus.OVERDUE.value, "updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Invoice status changed, please retry")

    logger.info(f"Invoice {invoice['invoice_number']} marked as overdue")
    return updated


async def cancel_invoice(db: AsyncIOMotorDatabase, invoice_id: str, reason: Optional[str] = None) -> Tuple[dict, str]:
    """Cancel any unpaid invoice. Returns the invoice and its previous status."""
    invoice = await get_invoice_or_404(db, invoice_id)
    old_status = invoice["status"]

    if old_status == InvoiceStatus.PAID.value:
        raise StateConflict("Cannot cancel a paid invoice")

    update_data = {"status": InvoiceStatus.CANCELLED.value, "updated_at": datetime.utcnow()}
    if reason:
        update_data["notes"] = f"Cancellation reason: {reason}"

    updated = await db.invoices.find_one_and_update(
        {"_id": invoice_id, "status": {"$ne": InvoiceStatus.PAID.value}},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Cannot cancel a paid invoice")

    logger.info(f"Invoice {invoice['invoice_number']} cancelled")
    return updated, old_status
