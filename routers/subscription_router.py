"""
Subscription Router - entitlement status for the signed-in user
"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import Identity, get_current_identity
from crud.subscription import LookupOutcome, SubscriptionRepository
from database import get_db
from models.subscription import SubscriptionStatus
from services.trial_service import TrialService, reconcile_expiry
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])

STATE_UNAVAILABLE = "Subscription status is temporarily unavailable"


@subscription_router.get("")
async def get_subscription(
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the user's subscription and entitlement, starting a trial on
    first sign-in.

    When the trial window has closed but the record still says "trial",
    the expired status is written after the response is sent.
    """
    result, status = await TrialService(SubscriptionRepository(db)).get_entitlement(identity.user_id)
    if status is None or result.record is None:
        return error_response(STATE_UNAVAILABLE, status=503)

    if status.needs_expiry_reconciliation:
        background_tasks.add_task(reconcile_expiry, identity.user_id)

    return success_response({
        "subscription": result.record.to_dict(),
        "status": status.to_dict(),
    })


@subscription_router.post("/cancel")
async def cancel_subscription(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a trial subscription."""
    result = await SubscriptionRepository(db).update_status(identity.user_id, SubscriptionStatus.CANCELLED)

    if result.outcome == LookupOutcome.NOT_FOUND:
        return error_response("No subscription found", status=404)
    if result.outcome == LookupOutcome.INVALID_TRANSITION:
        return error_response(result.error, status=409)
    if result.failed:
        return error_response(STATE_UNAVAILABLE, status=503)

    return success_response({"subscription": result.record.to_dict()})
