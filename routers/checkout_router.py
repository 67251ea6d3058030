"""
Checkout Router - Stripe checkout endpoints
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from fastapi import APIRouter, Request, Depends, Body
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from config.settings import settings
from crud.subscription import SubscriptionRepository
from database import get_db
from models.checkout import CheckoutRequest
from services.billing_service import (
    AlreadySubscribedError,
    BillingService,
    CheckoutConfigurationError,
    CheckoutError,
    ReconciliationRequiredError,
)
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

RECONCILIATION_MESSAGE = (
    "Your payment was received but your plan could not be updated. "
    "Our team has been notified and will complete your upgrade shortly."
)

checkout_router = APIRouter(prefix="/functions/v1", tags=["checkout"])


def get_billing_service(db: AsyncSession = Depends(get_db)) -> BillingService:
    return BillingService(SubscriptionRepository(db))


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@checkout_router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Handle Stripe webhook events with signature verification.

    A verified checkout.session.completed event records the enterprise
    upgrade for the hosted checkout flow.

    Always returns 200 OK to Stripe to prevent retries.
    """
    webhook_secret = settings.stripe_webhook_secret
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Webhook secret not configured"}
        )

    # Raw body is required for signature verification
    payload = await request.body()

    stripe_signature = request.headers.get("stripe-signature")
    if not stripe_signature:
        logger.error("Missing Stripe-Signature header")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Missing signature header"}
        )

    try:
        event = stripe.Webhook.construct_event(payload, stripe_signature, webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {e}")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Invalid webhook signature"}
        )
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Invalid payload format"}
        )

    try:
        result = await billing_service.process_webhook(event)
    except ReconciliationRequiredError:
        # Already logged at CRITICAL with every reference
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": "Upgrade requires reconciliation"}
        )
    except CheckoutConfigurationError as e:
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": str(e)}
        )

    return JSONResponse(
        status_code=200,
        content={
            "ok": True,
            "received": True,
            "handled": result["handled"],
            "event_type": result["event_type"],
        }
    )


@checkout_router.post("/create-checkout")
async def create_checkout(
    request: Request,
    body: CheckoutRequest = Body(...),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Start an enterprise upgrade.

    Without card fields a hosted Stripe Checkout session is created and its
    URL returned; with card fields the card is charged server-side and the
    upgrade recorded before responding.
    """
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY is not set. Rejecting checkout request.")
        return error_response(
            "Payment processing is currently unavailable. Please contact support.",
            status=503,
        )

    if not body.user_id or not body.email:
        return error_response("Missing required fields", status=400)

    try:
        if body.has_card_details:
            try:
                card = body.card_details()
            except ValueError as e:
                return error_response(str(e), status=400)
            result = await billing_service.create_direct_subscription(body.user_id, body.email, card)
        else:
            result = await billing_service.create_checkout_session(
                body.user_id, body.email, origin=request.headers.get("origin")
            )
    except CheckoutConfigurationError as e:
        return error_response(str(e), status=503)
    except AlreadySubscribedError as e:
        return error_response(str(e), status=409)
    except CheckoutError as e:
        return error_response(str(e), status=400)
    except ReconciliationRequiredError:
        return error_response(RECONCILIATION_MESSAGE, status=500)

    return success_response(result)
