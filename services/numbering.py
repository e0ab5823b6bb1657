"""
Document numbers (QT-2026-0001, INV-2026-0001, ...)

Sequences live in the `counters` collection, one document per prefix and
year, incremented atomically so concurrent creates never share a number.
"""

from datetime import datetime
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

QUOTATION_PREFIX = "QT"
INVOICE_PREFIX = "INV"
PAYMENT_PREFIX = "PAY"
PROJECT_PREFIX = "PRJ"


def format_document_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:04d}"


async def next_sequence(db: AsyncIOMotorDatabase, prefix: str, year: int) -> int:
    counter = await db.counters.find_one_and_update(
        {"_id": f"{prefix}-{year}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return counter["seq"]


async def next_document_number(
    db: AsyncIOMotorDatabase,
    prefix: str,
    now: Optional[datetime] = None
) -> str:
    year = (now or datetime.utcnow()).year
    sequence = await next_sequence(db, prefix, year)
    return format_document_number(prefix, year, sequence)
