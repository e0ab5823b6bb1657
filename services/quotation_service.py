"""
Quotation lifecycle

pending -> sent -> {accepted, rejected}; accepted -> converted.
Conversion itself lives in invoice_service since it creates the invoice.
"""

import re
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple, List
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from config import get_settings
from models.common import generate_id, to_naive_utc
from models.quotation import (
    QuotationCreate,
    QuotationUpdate,
    QuotationStatus,
    LOCKED_QUOTATION_STATUSES
)
from services.errors import NotFound, StateConflict, ValidationFailed
from services.money import compute_totals
from services.numbering import next_document_number, QUOTATION_PREFIX

logger = logging.getLogger(__name__)


async def get_quotation_or_404(db: AsyncIOMotorDatabase, quotation_id: str) -> dict:
    quotation = await db.quotations.find_one({"_id": quotation_id})
    if not quotation:
        raise NotFound("Quotation not found")
    return quotation


async def create_quotation(
    db: AsyncIOMotorDatabase,
    data: QuotationCreate,
    created_by: Optional[str]
) -> dict:
    """Quote a project. The client is inherited from the project."""
    if not data.project or not data.items:
        raise ValidationFailed("Project and items are required")

    project = await db.projects.find_one({"_id": data.project})
    if not project:
        raise NotFound("Project not found")

    totals = compute_totals(data.items, data.tax, data.discount)

    now = datetime.utcnow()
    valid_until = to_naive_utc(data.valid_until)
    if valid_until is None:
        valid_until = now + timedelta(days=get_settings().quotation_validity_days)

    quotation_doc = {
        "_id": generate_id(),
        "quotation_number": await next_document_number(db, QUOTATION_PREFIX, now),
        "project": project["_id"],
        "client": project["client"],
        **totals,
        "status": QuotationStatus.PENDING.value,
        "valid_until": valid_until,
        "notes": data.notes,
        "converted_to_invoice": None,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now
    }

    await db.quotations.insert_one(quotation_doc)

    # First quotation of the project becomes its back-reference
    await db.projects.update_one(
        {"_id": project["_id"], "quotation": None},
        {"$set": {"quotation": quotation_doc["_id"], "updated_at": now}}
    )

    logger.info(f"Quotation {quotation_doc['quotation_number']} created for project {project['_id']}")
    return quotation_doc


async def list_quotations(
    db: AsyncIOMotorDatabase,
    page: int,
    limit: int,
    status: Optional[str] = None,
    client: Optional[str] = None,
    project: Optional[str] = None,
    search: Optional[str] = None
) -> Tuple[List[dict], int]:
    query = {}
    if search:
        query["quotation_number"] = {"$regex": re.escape(search), "$options": "i"}
    if status:
        query["status"] = status
    if client:
        query["client"] = client
    if project:
        query["project"] = project

    cursor = db.quotations.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    quotations = await cursor.to_list(length=limit)
    total = await db.quotations.count_documents(query)
    return quotations, total


async def update_quotation(db: AsyncIOMotorDatabase, quotation_id: str, data: QuotationUpdate) -> dict:
    """Edit items, tax, discount, validity or notes while the quotation is still open"""
    quotation = await get_quotation_or_404(db, quotation_id)

    if quotation["status"] in LOCKED_QUOTATION_STATUSES:
        raise StateConflict("Cannot update an accepted or converted quotation")

    update_data = {}
    if data.items is not None or data.tax is not None or data.discount is not None:
        if data.items is not None and len(data.items) == 0:
            raise ValidationFailed("A quotation needs at least one item")
        items = data.items if data.items is not None else quotation["items"]
        tax = data.tax if data.tax is not None else quotation.get("tax", 0)
        discount = data.discount if data.discount is not None else quotation.get("discount", 0)
        update_data.update(compute_totals(items, tax, discount))
    if data.valid_until is not None:
        update_data["valid_until"] = to_naive_utc(data.valid_until)
    if data.notes is not None:
        update_data["notes"] = data.notes

    if not update_data:
        return quotation

    update_data["updated_at"] = datetime.utcnow()
    updated = await db.quotations.find_one_and_update(
        {"_id": quotation_id, "status": {"$nin": list(LOCKED_QUOTATION_STATUSES)}},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        # Accepted between our read and write
        raise StateConflict("Cannot update an accepted or converted quotation")

    logger.info(f"Quotation {quotation_id} updated")
    return updated


async def delete_quotation(db: AsyncIOMotorDatabase, quotation_id: str):
    await get_quotation_or_404(db, quotation_id)

    result = await db.quotations.delete_one({"_id": quotation_id, "converted_to_invoice": None})
    if result.deleted_count == 0:
        raise StateConflict("Cannot delete quotation that has been converted to invoice")

    logger.info(f"Quotation {quotation_id} deleted")


async def send_quotation(db: AsyncIOMotorDatabase, quotation_id: str) -> dict:
    """pending -> sent. Re-sending an already sent quotation keeps it sent."""
    quotation = await get_quotation_or_404(db, quotation_id)

    sendable = [QuotationStatus.PENDING.value, QuotationStatus.SENT.value]
    if quotation["status"] not in sendable:
        raise StateConflict(f"Cannot send a quotation that is {quotation['status']}")

    updated = await db.quotations.find_one_and_update(
        {"_id": quotation_id, "status": {"$in": sendable}},
        {"$set": {"status": QuotationStatus.SENT.value, "updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Quotation status changed, please retry")

    logger.info(f"Quotation {quotation['quotation_number']} sent")
    return updated


async def accept_quotation(
    db: AsyncIOMotorDatabase,
    quotation_id: str,
    now: Optional[datetime] = None
) -> dict:
    """sent -> accepted, only while the quotation is still valid"""
    now = now or datetime.utcnow()
    quotation = await get_quotation_or_404(db, quotation_id)

    if now > quotation["valid_until"]:
        raise StateConflict("This quotation has expired")

    if quotation["status"] != QuotationStatus.SENT.value:
        raise StateConflict("Only sent quotations can be accepted")

    updated = await db.quotations.find_one_and_update(
        {"_id": quotation_id, "status": QuotationStatus.SENT.value},
        {"$set": {"status": QuotationStatus.ACCEPTED.value, "updated_at": now}},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Only sent quotations can be accepted")

    logger.info(f"Quotation {quotation['quotation_number']} accepted")
    return updated


async def reject_quotation(db: AsyncIOMotorDatabase, quotation_id: str, reason: Optional[str] = None) -> dict:
    quotation = await get_quotation_or_404(db, quotation_id)

    if quotation["status"] in LOCKED_QUOTATION_STATUSES:
        raise StateConflict("Cannot reject an accepted or converted quotation")

    update_data = {"status": QuotationStatus.REJECTED.value, "updated_at": datetime.utcnow()}
    if reason:
        update_data["notes"] = f"Rejection reason: {reason}"

    updated = await db.quotations.find_one_and_update(
        {"_id": quotation_id, "status": {"$nin": list(LOCKED_QUOTATION_STATUSES)}},
        {"$set": update_data},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise StateConflict("Cannot reject an accepted or converted quotation")

    logger.info(f"Quotation {quotation['quotation_number']} rejected")
    return updated
