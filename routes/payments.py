"""
Payments Routes - payment recording and Stripe checkout for invoices
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status, Request, Header, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from database.mongodb import get_database
from services.auth_deps import get_current_user, require_roles, ensure_client_access
from models.user import User, BILLING_ROLES
from models.common import Pagination
from models.invoice import Invoice
from models.notification import NotificationCategory
from models.payment import (
    Payment,
    PaymentCreate,
    PaymentUpdate,
    PaymentInitiateRequest,
    PaymentMethod,
    PaymentStatus,
    OFFLINE_METHODS
)
from services import payment_service, notification_service, stripe_service
from services.errors import NotFound, ServiceError, ValidationFailed
from routes.common import envelope, page_limit
from config import get_settings

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = logging.getLogger(__name__)
settings = get_settings()


def serialize(payment: dict) -> dict:
    return Payment(**payment).dict(by_alias=True)


def _received_event(payment: dict, invoice: dict):
    return notification_service.build_event(
        NotificationCategory.PAYMENT,
        "Payment Received",
        f"Payment {payment['payment_number']} of {payment['amount']:.2f} received for invoice "
        f"{invoice['invoice_number']}. Remaining balance: "
        f"{invoice['total_amount'] - invoice['paid_amount']:.2f}.",
        client=invoice["client"],
        recipients=[invoice.get("created_by")],
        metadata={"payment_id": payment["_id"], "invoice_id": invoice["_id"]}
    )


async def _paged(db, page, limit, **filters):
    limit = page_limit(limit)
    payments, total = await payment_service.list_payments(db, page, limit, **filters)
    return envelope({
        "payments": [serialize(p) for p in payments],
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.post("", status_code=201)
async def record_payment(
    data: PaymentCreate,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    payment, invoice = await payment_service.record_payment(db, data)
    background_tasks.add_task(notification_service.fan_out, db, _received_event(payment, invoice))
    return envelope(
        {"payment": serialize(payment), "invoice": Invoice(**invoice).dict(by_alias=True)},
        "Payment recorded successfully"
    )


@router.get("")
async def list_payments(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[PaymentStatus] = None,
    payment_method: Optional[PaymentMethod] = None,
    client: Optional[str] = None,
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    return await _paged(
        db, page, limit,
        status=status.value if status else None,
        payment_method=payment_method.value if payment_method else None,
        client=client,
        search=search
    )


@router.post("/initiate", status_code=201)
async def initiate_payment(
    data: PaymentInitiateRequest,
    background_tasks: BackgroundTasks,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    """
    Start paying an invoice. Cash and bank transfers are recorded at once by
    billing staff; Stripe returns a checkout URL and completes via webhook.
    """
    invoice = await db.invoices.find_one({"_id": data.invoice_id})
    if not invoice:
        raise NotFound("Invoice not found")
    await ensure_client_access(db, current_user, invoice["client"])

    if data.method in OFFLINE_METHODS:
        if not current_user.has_any_role(*BILLING_ROLES):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only billing staff can record offline payments"
            )
        payment, invoice = await payment_service.record_payment(db, PaymentCreate(
            invoice=data.invoice_id,
            amount=data.amount,
            payment_method=data.method
        ))
        background_tasks.add_task(notification_service.fan_out, db, _received_event(payment, invoice))
        return envelope({"payment": serialize(payment)}, "Payment recorded successfully")

    if data.method != PaymentMethod.STRIPE:
        raise ValidationFailed(f"Payment method {data.method.value} is not supported for online payments")

    payment, invoice = await payment_service.create_pending_payment(db, data.invoice_id, data.amount, data.method)

    success_url = data.success_url or f"{settings.frontend_url}/invoices/{invoice['_id']}?payment=success"
    cancel_url = data.cancel_url or f"{settings.frontend_url}/invoices/{invoice['_id']}?payment=cancelled"
    try:
        result = await stripe_service.create_checkout_session(
            payment_id=payment["_id"],
            invoice_id=invoice["_id"],
            invoice_number=invoice["invoice_number"],
            amount=data.amount,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=data.payer_email or current_user.email
        )
    except Exception as e:
        await payment_service.fail_pending_payment(db, payment["_id"], f"Checkout could not be started: {e}")
        raise ServiceError("Payment gateway error, please try again later")

    payment = await payment_service.set_processor_refs(db, payment["_id"], "stripe", {"session_id": result["session_id"]})

    logger.info(f"Stripe checkout started for invoice {invoice['invoice_number']} by {current_user.email}")
    return envelope(
        {"payment": serialize(payment), "checkout_url": result["checkout_url"]},
        "Payment initiated"
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """
    Handle Stripe webhook events.
    Always answers 200 so Stripe does not retry on our own failures.
    """
    try:
        if not stripe_signature:
            logger.warning("Webhook received without Stripe signature")
            return {"received": True}

        payload = await request.body()

        try:
            event = stripe_service.verify_webhook_signature(payload, stripe_signature)
        except Exception as e:
            logger.error(f"Webhook signature verification failed: {e}")
            return {"received": True}

        event_type = event["type"]
        data = event["data"]["object"]

        logger.info(f"Processing webhook event: {event_type}")

        try:
            if event_type == "checkout.session.completed":
                await handle_checkout_completed(db, data, background_tasks)

            elif event_type == "checkout.session.expired":
                await handle_checkout_expired(db, data)
        except Exception as e:
            logger.error(f"Webhook handler error for {event_type}: {e}")

    except Exception as e:
        logger.error(f"Webhook global error: {e}")

    return {"received": True}


async def handle_checkout_completed(db: AsyncIOMotorDatabase, session: dict, background_tasks: BackgroundTasks):
    payment_id = (session.get("metadata") or {}).get("payment_id")
    if not payment_id:
        logger.error(f"Missing payment_id in checkout session {session.get('id')}")
        return

    payment, invoice = await payment_service.complete_pending_payment(
        db, payment_id, transaction_id=session.get("payment_intent")
    )
    if payment and invoice:
        background_tasks.add_task(notification_service.fan_out, db, _received_event(payment, invoice))


async def handle_checkout_expired(db: AsyncIOMotorDatabase, session: dict):
    payment_id = (session.get("metadata") or {}).get("payment_id")
    if payment_id:
        await payment_service.fail_pending_payment(db, payment_id, "Checkout session expired")


@router.get("/invoice/{invoice_id}")
async def payments_for_invoice(
    invoice_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    return await _paged(db, page, limit, invoice=invoice_id)


@router.get("/client/{client_id}")
async def payments_for_client(
    client_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    return await _paged(db, page, limit, client=client_id)


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    payment = await payment_service.get_payment_or_404(db, payment_id)
    await ensure_client_access(db, current_user, payment["client"])
    return envelope({"payment": serialize(payment)})


@router.put("/{payment_id}")
async def update_payment(
    payment_id: str,
    data: PaymentUpdate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    payment = await payment_service.update_payment(db, payment_id, data)
    return envelope({"payment": serialize(payment)}, "Payment updated successfully")


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    await payment_service.delete_payment(db, payment_id)
    return envelope(message="Payment deleted successfully")
