"""
Quotation Routes - quote, send, accept/reject, convert to invoice
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from database.mongodb import get_database
from services.auth_deps import get_current_user, require_roles, ensure_client_access
from models.user import User, Role, BILLING_ROLES, STAFF_ROLES
from models.invoice import Invoice
from models.notification import NotificationCategory
from models.common import Pagination
from models.quotation import (
    Quotation,
    QuotationCreate,
    QuotationUpdate,
    QuotationReject,
    QuotationStatus,
    ConvertToInvoiceRequest
)
from services import quotation_service, invoice_service, notification_service
from routes.common import envelope, page_limit

router = APIRouter(prefix="/api/quotations", tags=["quotations"])
logger = logging.getLogger(__name__)


def serialize(quotation: dict) -> dict:
    return Quotation(**quotation).dict(by_alias=True)


@router.post("", status_code=201)
async def create_quotation(
    data: QuotationCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    quotation = await quotation_service.create_quotation(db, data, current_user.id)

    event = notification_service.build_event(
        NotificationCategory.QUOTATION,
        "New Quotation",
        f"Quotation {quotation['quotation_number']} for {quotation['total_amount']:.2f} has been prepared.",
        client=quotation["client"],
        project=quotation["project"],
        metadata={"quotation_id": quotation["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"quotation": serialize(quotation)}, "Quotation created successfully")


@router.get("")
async def list_quotations(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[QuotationStatus] = None,
    client: Optional[str] = None,
    project: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    limit = page_limit(limit)
    quotations, total = await quotation_service.list_quotations(
        db, page, limit,
        status=status.value if status else None,
        client=client,
        project=project,
        search=search
    )
    return envelope({
        "quotations": [serialize(q) for q in quotations],
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.get("/{quotation_id}")
async def get_quotation(
    quotation_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    quotation = await quotation_service.get_quotation_or_404(db, quotation_id)
    await ensure_client_access(db, current_user, quotation["client"])
    return envelope({"quotation": serialize(quotation)})


@router.put("/{quotation_id}")
async def update_quotation(
    quotation_id: str,
    data: QuotationUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    quotation = await quotation_service.update_quotation(db, quotation_id, data)
    return envelope({"quotation": serialize(quotation)}, "Quotation updated successfully")


@router.delete("/{quotation_id}")
async def delete_quotation(
    quotation_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(Role.SUPER_ADMIN))
):
    await quotation_service.delete_quotation(db, quotation_id)
    return envelope(message="Quotation deleted successfully")


@router.post("/{quotation_id}/send")
async def send_quotation(
    quotation_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    quotation = await quotation_service.send_quotation(db, quotation_id)

    event = notification_service.build_event(
        NotificationCategory.QUOTATION,
        "Quotation Received",
        f"Quotation {quotation['quotation_number']} is ready for your review. "
        f"It is valid until {quotation['valid_until']:%Y-%m-%d}.",
        client=quotation["client"],
        metadata={"quotation_id": quotation["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"quotation": serialize(quotation)}, "Quotation sent successfully")


@router.patch("/{quotation_id}/accept")
async def accept_quotation(
    quotation_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    quotation = await quotation_service.get_quotation_or_404(db, quotation_id)
    await ensure_client_access(db, current_user, quotation["client"])

    quotation = await quotation_service.accept_quotation(db, quotation_id)

    event = notification_service.build_event(
        NotificationCategory.QUOTATION,
        "Quotation Accepted",
        f"Quotation {quotation['quotation_number']} has been accepted.",
        project=quotation["project"],
        recipients=[quotation.get("created_by")],
        metadata={"quotation_id": quotation["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"quotation": serialize(quotation)}, "Quotation accepted successfully")


@router.patch("/{quotation_id}/reject")
async def reject_quotation(
    quotation_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[QuotationReject] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    quotation = await quotation_service.get_quotation_or_404(db, quotation_id)
    await ensure_client_access(db, current_user, quotation["client"])

    reason = data.reason if data else None
    quotation = await quotation_service.reject_quotation(db, quotation_id, reason)

    message = f"Quotation {quotation['quotation_number']} has been rejected."
    if reason:
        message += f" Reason: {reason}"
    event = notification_service.build_event(
        NotificationCategory.QUOTATION,
        "Quotation Rejected",
        message,
        project=quotation["project"],
        recipients=[quotation.get("created_by")],
        metadata={"quotation_id": quotation["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope({"quotation": serialize(quotation)}, "Quotation rejected")


@router.post("/{quotation_id}/convert-to-invoice", status_code=201)
async def convert_to_invoice(
    quotation_id: str,
    background_tasks: BackgroundTasks,
    data: Optional[ConvertToInvoiceRequest] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    invoice, quotation = await invoice_service.create_invoice_from_quotation(
        db,
        quotation_id,
        data.due_date if data else None,
        current_user.id
    )

    event = notification_service.build_event(
        NotificationCategory.INVOICE,
        "New Invoice",
        f"Invoice {invoice['invoice_number']} for {invoice['total_amount']:.2f} has been created "
        f"from quotation {quotation['quotation_number']}.",
        client=invoice["client"],
        metadata={"invoice_id": invoice["_id"], "quotation_id": quotation["_id"]}
    )
    background_tasks.add_task(notification_service.fan_out, db, event)

    return envelope(
        {"invoice": Invoice(**invoice).dict(by_alias=True), "quotation": serialize(quotation)},
        "Quotation converted to invoice successfully"
    )
