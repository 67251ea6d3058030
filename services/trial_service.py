"""
Trial Service for evaluating 14-day trial periods and reconciling expiry
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from crud.subscription import RepositoryResult, SubscriptionRepository
from database_models import UserSubscription, as_utc
from models.subscription import (
    NO_SUBSCRIPTION_STATUS,
    PlanType,
    SubscriptionStatus,
    TrialStatus,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def evaluate(record: Optional[UserSubscription], now: Optional[datetime] = None) -> TrialStatus:
    """
    Compute the entitlement state for a subscription record. Performs no I/O.

    Rules:
    - No record: expired, 0 days, inactive
    - Active enterprise plan: never expires, unlimited days
    - Otherwise days remaining is the ceiling of the time left in whole days;
      the trial is expired when the stored status says so or no time is left

    Args:
        record: The user's subscription record, or None
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        TrialStatus; needs_expiry_reconciliation is set when the record is
        still stored as a trial although its window has closed
    """
    if record is None:
        return NO_SUBSCRIPTION_STATUS

    status = record.subscription_status
    if record.plan_type == PlanType.ENTERPRISE.value and status == SubscriptionStatus.ACTIVE.value:
        return TrialStatus(is_expired=False, days_remaining=None, is_active=True)

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    seconds_left = (as_utc(record.trial_end_date) - now).total_seconds()
    days_remaining = math.ceil(seconds_left / SECONDS_PER_DAY)

    is_expired = status == SubscriptionStatus.EXPIRED.value or days_remaining <= 0

    return TrialStatus(
        is_expired=is_expired,
        days_remaining=max(0, days_remaining),
        is_active=status == SubscriptionStatus.ACTIVE.value,
        needs_expiry_reconciliation=is_expired and status == SubscriptionStatus.TRIAL.value,
    )


async def reconcile_expiry(
    user_id: str,
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> RepositoryResult:
    """
    Persist the trial -> expired transition for a user whose window has closed.

    Runs in its own session so it can be scheduled after the response has
    been sent. Re-reads the record first; records that are no longer stored
    as an elapsed trial are left alone, which makes repeated or concurrent
    calls harmless.

    Args:
        user_id: Identity-provider user id
        session_factory: Session factory (defaults to the application's)
        now: Evaluation time (defaults to the current UTC time)
    """
    if session_factory is None:
        from database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    async with session_factory() as session:
        repo = SubscriptionRepository(session)
        result = await repo.get_by_user(user_id)
        if not result.found:
            return result

        if not evaluate(result.record, now).needs_expiry_reconciliation:
            return result

        logger.info(f"Trial window closed for user {user_id}; marking subscription expired")
        return await repo.update_status(user_id, SubscriptionStatus.EXPIRED)


class TrialService:
    """
    Service for the session-start flow: make sure a user has a subscription
    record and report their entitlement.
    """

    def __init__(self, repo: SubscriptionRepository):
        self.repo = repo

    async def get_entitlement(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Tuple[RepositoryResult, Optional[TrialStatus]]:
        """
        Fetch the user's record, provisioning a trial when none exists.

        A persistence failure is "unknown state": no trial is created and
        the returned status is None. The same applies when a trial could not
        be read back after creation.

        Returns:
            (repository result, trial status or None)
        """
        result = await self.repo.get_by_user(user_id)
        if result.not_found:
            logger.info(f"No subscription for user {user_id}; starting trial")
            result = await self.repo.create_trial(user_id, now=now)

        if not result.found:
            logger.warning(f"Subscription state unknown for user {user_id}: {result.error or result.outcome.value}")
            return result, None

        return result, evaluate(result.record, now)
