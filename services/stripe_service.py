"""
Stripe Service - Handle Stripe API interactions
"""

import stripe
import logging
from typing import Optional

from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key


def to_minor_units(amount: float) -> int:
    """Stripe takes amounts in cents"""
    return int(round(amount * 100))


async def create_checkout_session(
    payment_id: str,
    invoice_id: str,
    invoice_number: str,
    amount: float,
    success_url: str,
    cancel_url: str,
    customer_email: Optional[str] = None
) -> dict:
    """
    Create a one-off Stripe Checkout session paying (part of) an invoice.
    The payment and invoice IDs travel in the metadata so the webhook can
    find the pending payment again.
    """
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            mode="payment",
            customer_email=customer_email,
            line_items=[{
                "price_data": {
                    "currency": settings.currency.lower(),
                    "unit_amount": to_minor_units(amount),
                    "product_data": {"name": f"Invoice {invoice_number}"}
                },
                "quantity": 1
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=payment_id,
            metadata={
                "payment_id": payment_id,
                "invoice_id": invoice_id
            },
        )

        logger.info(f"Created checkout session {session.id} for invoice {invoice_number}, payment {payment_id}")

        return {
            "session_id": session.id,
            "checkout_url": session.url
        }

    except stripe.error.StripeError as e:
        logger.error(f"Stripe error creating checkout session: {e}")
        raise


def verify_webhook_signature(payload: bytes, sig_header: str) -> dict:
    """
    Verify Stripe webhook signature and return the event.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret
        )
        return event

    except stripe.error.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise
