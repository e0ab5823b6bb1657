"""
Reporting - read-only aggregates over the billing collections.
Everything is recomputed on each call; nothing here writes.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List
from motor.motor_asyncio import AsyncIOMotorDatabase

from models.invoice import InvoiceStatus, OUTSTANDING_STATUSES
from models.payment import PaymentStatus
from models.project import ProjectStatus
from models.quotation import QuotationStatus
from services.money import round_money

logger = logging.getLogger(__name__)

RECENT_ADMIN = 10
RECENT_CLIENT = 5
TOP_CLIENTS = 10

PERIOD_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "yearly": 365
}


def _count_by(documents: List[dict], field: str, values) -> Dict[str, int]:
    counts = {value.value: 0 for value in values}
    for doc in documents:
        key = doc.get(field)
        if key in counts:
            counts[key] += 1
    return counts


def _balance(invoice: dict) -> float:
    return round_money(invoice["total_amount"] - invoice.get("paid_amount", 0))


def outstanding_total(invoices: List[dict]) -> float:
    return sum(_balance(inv) for inv in invoices if inv["status"] in OUTSTANDING_STATUSES)


async def _all(collection, query: dict) -> List[dict]:
    return await collection.find(query).to_list(length=None)


async def _recent(collection, query: dict, limit: int) -> List[dict]:
    return await collection.find(query).sort("created_at", -1).limit(limit).to_list(length=limit)


async def invoice_stats(
    db: AsyncIOMotorDatabase,
    client: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> dict:
    query = {}
    if client:
        query["client"] = client
    if start_date or end_date:
        query["created_at"] = {}
        if start_date:
            query["created_at"]["$gte"] = start_date
        if end_date:
            query["created_at"]["$lte"] = end_date

    invoices = await _all(db.invoices, query)
    billable = [inv for inv in invoices if inv["status"] != InvoiceStatus.CANCELLED.value]

    return {
        "total_invoices": len(invoices),
        "by_status": _count_by(invoices, "status", InvoiceStatus),
        "total_invoiced": sum(inv["total_amount"] for inv in billable),
        "total_paid": sum(inv.get("paid_amount", 0) for inv in invoices),
        "total_outstanding": outstanding_total(invoices)
    }


async def overdue_invoices(db: AsyncIOMotorDatabase, now: Optional[datetime] = None) -> List[dict]:
    """
    Unpaid, non-cancelled, issued invoices past their due date, whether or not
    their stored status was ever flipped to overdue.
    """
    now = now or datetime.utcnow()
    query = {
        "status": {"$nin": [
            InvoiceStatus.PAID.value,
            InvoiceStatus.CANCELLED.value,
            InvoiceStatus.DRAFT.value
        ]},
        "due_date": {"$lt": now}
    }
    return await db.invoices.find(query).sort("due_date", 1).to_list(length=None)


async def admin_dashboard(db: AsyncIOMotorDatabase) -> dict:
    projects = await _all(db.projects, {})
    invoices = await _all(db.invoices, {})
    payments = await _all(db.payments, {})
    quotations = await _all(db.quotations, {})
    clients = await _all(db.clients, {})

    paid_invoices = [inv for inv in invoices if inv["status"] == InvoiceStatus.PAID.value]
    completed_payments = [p for p in payments if p["status"] == PaymentStatus.COMPLETED.value]
    payment_total = sum(p["amount"] for p in completed_payments)

    return {
        "overview": {
            "projects": {
                "total": len(projects),
                "by_status": _count_by(projects, "status", ProjectStatus)
            },
            "invoices": {
                "total": len(invoices),
                "by_status": _count_by(invoices, "status", InvoiceStatus),
                "outstanding": outstanding_total(invoices)
            },
            "payments": {
                "total": len(payments),
                "completed": len(completed_payments),
                "total_amount": payment_total
            },
            "quotations": {
                "total": len(quotations),
                "by_status": _count_by(quotations, "status", QuotationStatus)
            },
            "clients": {
                "total": len(clients),
                "active": sum(1 for c in clients if c.get("is_active", True))
            },
            "revenue": {
                "total": sum(inv["total_amount"] for inv in paid_invoices),
                "from_payments": payment_total
            }
        },
        "recent_activity": {
            "projects": await _recent(db.projects, {}, RECENT_ADMIN),
            "invoices": await _recent(db.invoices, {}, RECENT_ADMIN),
            "payments": await _recent(db.payments, {}, RECENT_ADMIN)
        }
    }


async def client_dashboard(db: AsyncIOMotorDatabase, client_id: str) -> dict:
    scope = {"client": client_id}
    projects = await _all(db.projects, scope)
    invoices = await _all(db.invoices, scope)
    payments = await _all(db.payments, scope)
    quotations = await _all(db.quotations, scope)

    completed_payments = [p for p in payments if p["status"] == PaymentStatus.COMPLETED.value]
    total_spent = sum(inv["total_amount"] for inv in invoices if inv["status"] == InvoiceStatus.PAID.value)
    outstanding = outstanding_total(invoices)

    return {
        "overview": {
            "projects": {
                "total": len(projects),
                "by_status": _count_by(projects, "status", ProjectStatus)
            },
            "invoices": {
                "total": len(invoices),
                "by_status": _count_by(invoices, "status", InvoiceStatus),
                "outstanding": outstanding
            },
            "payments": {
                "total": len(payments),
                "total_amount": sum(p["amount"] for p in completed_payments)
            },
            "quotations": {
                "total": len(quotations),
                "by_status": _count_by(quotations, "status", QuotationStatus)
            },
            "financial": {
                "total_spent": total_spent,
                "outstanding_balance": outstanding
            }
        },
        "recent_activity": {
            "projects": await _recent(db.projects, scope, RECENT_CLIENT),
            "invoices": await _recent(db.invoices, scope, RECENT_CLIENT),
            "payments": await _recent(db.payments, scope, RECENT_CLIENT)
        }
    }


async def revenue_stats(
    db: AsyncIOMotorDatabase,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    period: str = "monthly"
) -> dict:
    """Revenue in a window: both bounds when given, otherwise the trailing `period`"""
    if start_date and end_date:
        start, end = start_date, end_date
    else:
        end = datetime.utcnow()
        start = end - timedelta(days=PERIOD_DAYS[period])

    paid_invoices = await _all(db.invoices, {
        "status": InvoiceStatus.PAID.value,
        "paid_date": {"$gte": start, "$lte": end}
    })
    payments = await _all(db.payments, {
        "status": PaymentStatus.COMPLETED.value,
        "payment_date": {"$gte": start, "$lte": end}
    })
    open_invoices = await _all(db.invoices, {"status": {"$in": OUTSTANDING_STATUSES}})

    by_method: Dict[str, float] = {}
    for payment in payments:
        method = payment["payment_method"]
        by_method[method] = by_method.get(method, 0) + payment["amount"]

    by_client: Dict[str, float] = {}
    for invoice in paid_invoices:
        by_client[invoice["client"]] = by_client.get(invoice["client"], 0) + invoice["total_amount"]

    ranked = sorted(by_client.items(), key=lambda item: item[1], reverse=True)[:TOP_CLIENTS]
    client_docs = {}
    if ranked:
        ids = [client_id for client_id, _ in ranked]
        for doc in await _all(db.clients, {"_id": {"$in": ids}}):
            client_docs[doc["_id"]] = doc

    top_clients = []
    for client_id, total in ranked:
        doc = client_docs.get(client_id, {})
        top_clients.append({
            "client": client_id,
            "name": f"{doc.get('first_name', '')} {doc.get('last_name', '')}".strip() or None,
            "company": doc.get("company"),
            "total": total
        })

    return {
        "period": {"start": start, "end": end, "type": period},
        "revenue": {
            "total": sum(inv["total_amount"] for inv in paid_invoices),
            "outstanding": outstanding_total(open_invoices),
            "by_method": by_method
        },
        "top_clients": top_clients,
        "invoice_count": len(paid_invoices),
        "payment_count": len(payments)
    }
