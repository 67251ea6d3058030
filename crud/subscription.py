"""
SubscriptionRepository for database operations on UserSubscription model
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from database_models import UserSubscription
from models.subscription import (
    ALLOWED_STATUS_TRANSITIONS,
    PlanType,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)


class LookupOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    PERSISTENCE_FAILURE = "persistence_failure"
    INVALID_TRANSITION = "invalid_transition"


@dataclass(frozen=True)
class RepositoryResult:
    """
    Outcome of a repository operation.

    Separates "no subscription yet" (NOT_FOUND) from "the store could not be
    reached" (PERSISTENCE_FAILURE) so callers never mistake one for the other.
    """
    outcome: LookupOutcome
    record: Optional[UserSubscription] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.outcome == LookupOutcome.FOUND

    @property
    def not_found(self) -> bool:
        return self.outcome == LookupOutcome.NOT_FOUND

    @property
    def failed(self) -> bool:
        return self.outcome == LookupOutcome.PERSISTENCE_FAILURE

    @classmethod
    def of(cls, record: Optional[UserSubscription]) -> "RepositoryResult":
        if record is None:
            return cls(LookupOutcome.NOT_FOUND)
        return cls(LookupOutcome.FOUND, record)

    @classmethod
    def failure(cls, error: Exception) -> "RepositoryResult":
        return cls(LookupOutcome.PERSISTENCE_FAILURE, error=str(error))


class SubscriptionRepository:
    """
    Repository class for UserSubscription database operations.
    Sole owner of the write path to subscription records.

    No method raises for store errors: failures are logged, the session is
    rolled back and a PERSISTENCE_FAILURE result is returned.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def _fetch(self, user_id: str) -> Optional[UserSubscription]:
        result = await self.db.execute(
            select(UserSubscription).where(UserSubscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Rollback failed: {e}")

    async def get_by_user(self, user_id: str) -> RepositoryResult:
        """
        Fetch the subscription record for a user.

        Args:
            user_id: Identity-provider user id

        Returns:
            FOUND with the record, NOT_FOUND when the user has none yet,
            PERSISTENCE_FAILURE if the query failed
        """
        try:
            return RepositoryResult.of(await self._fetch(user_id))
        except SQLAlchemyError as e:
            logger.error(f"Error fetching subscription for user {user_id}: {e}")
            await self._rollback()
            return RepositoryResult.failure(e)

    async def get_by_stripe_subscription(self, stripe_subscription_id: str) -> RepositoryResult:
        """Fetch the record that references a Stripe subscription id."""
        try:
            result = await self.db.execute(
                select(UserSubscription).where(
                    UserSubscription.stripe_subscription_id == stripe_subscription_id
                )
            )
            return RepositoryResult.of(result.scalars().first())
        except SQLAlchemyError as e:
            logger.error(f"Error fetching subscription {stripe_subscription_id}: {e}")
            await self._rollback()
            return RepositoryResult.failure(e)

    async def create_trial(self, user_id: str, now: Optional[datetime] = None) -> RepositoryResult:
        """
        Create the trial record for a user unless one already exists.

        A second call for the same user returns the existing record untouched,
        so the trial window is never restarted. If a concurrent request wins
        the insert, the unique constraint rejects ours and the winner's row is
        returned instead.

        Args:
            user_id: Identity-provider user id
            now: Trial start time (defaults to the current UTC time)

        Returns:
            FOUND with the user's record, or PERSISTENCE_FAILURE
        """
        start = now or datetime.now(timezone.utc)
        try:
            existing = await self._fetch(user_id)
            if existing is not None:
                logger.info(f"Trial already provisioned for user {user_id}; keeping existing record")
                return RepositoryResult.of(existing)

            record = UserSubscription(
                user_id=user_id,
                trial_start_date=start,
                trial_end_date=start + timedelta(days=settings.trial_days),
                subscription_status=SubscriptionStatus.TRIAL.value,
                plan_type=PlanType.TRIAL.value,
                created_at=start,
                updated_at=start,
            )
            self.db.add(record)
            await self.db.commit()
            await self.db.refresh(record)
            logger.info(f"Created {settings.trial_days}-day trial for user {user_id}")
            return RepositoryResult.of(record)
        except IntegrityError:
            await self._rollback()
            logger.info(f"Concurrent trial creation for user {user_id}; using the stored record")
            return await self.get_by_user(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Error creating trial subscription for user {user_id}: {e}")
            await self._rollback()
            return RepositoryResult.failure(e)

    async def update_status(self, user_id: str, status: SubscriptionStatus) -> RepositoryResult:
        """
        Set subscription_status (and updated_at) for a user.

        Only the transitions in ALLOWED_STATUS_TRANSITIONS are applied;
        re-applying the current status is a no-op. Enterprise records stay
        active.

        Args:
            user_id: Identity-provider user id
            status: Target status

        Returns:
            FOUND with the updated record, NOT_FOUND, INVALID_TRANSITION or
            PERSISTENCE_FAILURE
        """
        target = SubscriptionStatus(status)
        try:
            record = await self._fetch(user_id)
            if record is None:
                logger.warning(f"Status update to {target.value} for user {user_id} without a subscription")
                return RepositoryResult.of(None)

            current = SubscriptionStatus(record.subscription_status)
            if current == target:
                return RepositoryResult.of(record)

            if record.plan_type == PlanType.ENTERPRISE.value or target not in ALLOWED_STATUS_TRANSITIONS[current]:
                logger.warning(
                    f"Rejected status transition {current.value} -> {target.value} "
                    f"for user {user_id} (plan {record.plan_type})"
                )
                return RepositoryResult(
                    LookupOutcome.INVALID_TRANSITION,
                    record,
                    error=f"Cannot change status from {current.value} to {target.value}",
                )

            record.subscription_status = target.value
            record.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
            await self.db.refresh(record)
            logger.info(f"Subscription for user {user_id} moved {current.value} -> {target.value}")
            return RepositoryResult.of(record)
        except SQLAlchemyError as e:
            logger.error(f"Error updating subscription status for user {user_id}: {e}")
            await self._rollback()
            return RepositoryResult.failure(e)

    async def upgrade_to_enterprise(
        self,
        user_id: str,
        stripe_customer_id: str,
        stripe_subscription_id: str,
        stripe_payment_method_id: str,
    ) -> RepositoryResult:
        """
        Upgrade a user to the enterprise plan after a successful payment.

        Plan, status and all three Stripe references are written in a single
        commit.

        Args:
            user_id: Identity-provider user id
            stripe_customer_id: Stripe customer id
            stripe_subscription_id: Stripe subscription id
            stripe_payment_method_id: Stripe payment method id

        Returns:
            FOUND with the upgraded record, NOT_FOUND, INVALID_TRANSITION when a
            Stripe reference is missing, or PERSISTENCE_FAILURE
        """
        if not (stripe_customer_id and stripe_subscription_id and stripe_payment_method_id):
            logger.error(f"Refusing enterprise upgrade for user {user_id}: missing Stripe reference")
            return RepositoryResult(
                LookupOutcome.INVALID_TRANSITION,
                error="Enterprise plans require customer, subscription and payment method ids",
            )

        try:
            record = await self._fetch(user_id)
            if record is None:
                logger.error(f"Enterprise upgrade for user {user_id} without a subscription record")
                return RepositoryResult.of(None)

            record.plan_type = PlanType.ENTERPRISE.value
            record.subscription_status = SubscriptionStatus.ACTIVE.value
            record.stripe_customer_id = stripe_customer_id
            record.stripe_subscription_id = stripe_subscription_id
            record.stripe_payment_method_id = stripe_payment_method_id
            record.updated_at = datetime.now(timezone.utc)
            await self.db.commit()
            await self.db.refresh(record)
            logger.info(f"User {user_id} upgraded to enterprise (subscription {stripe_subscription_id})")
            return RepositoryResult.of(record)
        except SQLAlchemyError as e:
            logger.error(f"Error upgrading subscription for user {user_id}: {e}")
            await self._rollback()
            return RepositoryResult.failure(e)
