"""
Invoice Routes - invoice lifecycle and invoice reporting
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional
import logging

from database.mongodb import get_database
from services.auth_deps import get_current_user, require_roles, ensure_client_access
from models.user import User, Role, BILLING_ROLES, STAFF_ROLES
from models.common import Pagination, to_naive_utc
from models.notification import NotificationCategory
from models.payment import Payment
from models.invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceFromQuotation,
    InvoiceUpdate,
    InvoiceCancel,
    InvoiceStatus,
    MarkPaidRequest
)
from services import invoice_service, reporting_service, notification_service
from routes.common import envelope, page_limit

router = APIRouter(prefix="/api/invoices", tags=["invoices"])
logger = logging.getLogger(__name__)


def serialize(invoice: dict) -> dict:
    return Invoice(**invoice).dict(by_alias=True)


def _created_event(invoice: dict):
    return notification_service.build_event(
        NotificationCategory.INVOICE,
        "New Invoice",
        f"Invoice {invoice['invoice_number']} for {invoice['total_amount']:.2f} has been created. "
        f"Due date: {invoice['due_date']:%Y-%m-%d}.",
        client=invoice["client"],
        metadata={"invoice_id": invoice["_id"]}
    )


@router.post("", status_code=201)
async def create_invoice(
    data: InvoiceFromQuotation,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    """Invoice an accepted quotation"""
    invoice, _ = await invoice_service.create_invoice_from_quotation(
        db, data.quotation, data.due_date, current_user.id
    )
    background_tasks.add_task(notification_service.fan_out, db, _created_event(invoice))
    return envelope({"invoice": serialize(invoice)}, "Invoice created successfully")


@router.post("/standalone", status_code=201)
async def create_standalone_invoice(
    data: InvoiceCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    invoice = await invoice_service.create_standalone_invoice(db, data, current_user.id)
    background_tasks.add_task(notification_service.fan_out, db, _created_event(invoice))
    return envelope({"invoice": serialize(invoice)}, "Invoice created successfully")


@router.get("")
async def list_invoices(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[InvoiceStatus] = None,
    client: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    limit = page_limit(limit)
    invoices, total = await invoice_service.list_invoices(
        db, page, limit,
        status=status.value if status else None,
        client=client,
        search=search
    )
    return envelope({
        "invoices": [serialize(inv) for inv in invoices],
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.get("/stats")
async def invoice_stats(
    client: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    stats = await reporting_service.invoice_stats(
        db,
        client=client,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date)
    )
    return envelope({"stats": stats})


@router.get("/overdue")
async def overdue_invoices(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    invoices = await reporting_service.overdue_invoices(db)
    return envelope({"invoices": [serialize(inv) for inv in invoices], "count": len(invoices)})


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    invoice = await invoice_service.get_invoice_or_404(db, invoice_id)
    await ensure_client_access(db, current_user, invoice["client"])

    payments = await invoice_service.get_invoice_payments(db, invoice_id)
    return envelope({
        "invoice": serialize(invoice),
        "payments": [Payment(**p).dict(by_alias=True) for p in payments]
    })


@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    data: InvoiceUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    invoice = await invoice_service.update_invoice(db, invoice_id, data)
    return envelope({"invoice": serialize(invoice)}, "Invoice updated successfully")


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN))
):
    await invoice_service.delete_invoice(db, invoice_id)
    return envelope(message="Invoice deleted successfully")


@router.post("/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    invoice, client = await invoice_service.send_invoice(db, invoice_id)

    event = notification_service.build_event(
        NotificationCategory.INVOICE,
        "Invoice Sent",
        f"Invoice {invoice['invoice_number']} for {invoice['total_amount']:.2f} has been sent to you. "
        f"Due date: {invoice['due_date']:%Y-%m-%d}.",
        client=client["_id"],
        metadata={"invoice_id": invoice["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"invoice": serialize(invoice)}, "Invoice sent successfully")


@router.patch("/{invoice_id}/mark-paid")
async def mark_paid(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[MarkPaidRequest] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    data = data or MarkPaidRequest()
    invoice, payment = await invoice_service.mark_paid(
        db, invoice_id, data.payment_method, data.transaction_id
    )

    event = notification_service.build_event(
        NotificationCategory.PAYMENT,
        "Payment Received",
        f"Invoice {invoice['invoice_number']} has been paid in full. Thank you!",
        client=invoice["client"],
        recipients=[invoice.get("created_by")],
        metadata={"invoice_id": invoice["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    result = {"invoice": serialize(invoice)}
    if payment:
        result["payment"] = Payment(**payment).dict(by_alias=True)
    return envelope(result, "Invoice marked as paid")


@router.patch("/{invoice_id}/mark-overdue")
async def mark_overdue(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    invoice = await invoice_service.mark_overdue(db, invoice_id)

    event = notification_service.build_event(
        NotificationCategory.INVOICE,
        "Invoice Overdue",
        f"Invoice {invoice['invoice_number']} is now overdue. Please make payment as soon as possible.",
        client=invoice["client"],
        metadata={"invoice_id": invoice["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"invoice": serialize(invoice)}, "Invoice marked as overdue")


@router.patch("/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[InvoiceCancel] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    reason = data.reason if data else None
    invoice, old_status = await invoice_service.cancel_invoice(db, invoice_id, reason)

    # A draft was never seen by the client
    if old_status != InvoiceStatus.DRAFT.value:
        message = f"Invoice {invoice['invoice_number']} has been cancelled."
        if reason:
            message += f" Reason: {reason}"
        event = notification_service.build_event(
            NotificationCategory.INVOICE,
            "Invoice Cancelled",
            message,
            client=invoice["client"],
            metadata={"invoice_id": invoice["_id"]}
        )
        background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"invoice": serialize(invoice)}, "Invoice cancelled successfully")
