import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, UniqueConstraint
from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserSubscription(Base):
    """
    Subscription / trial record for a single user.
    One row per user, never hard-deleted.
    """
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_subscriptions_user_id"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    trial_start_date = Column(DateTime(timezone=True), nullable=False)
    trial_end_date = Column(DateTime(timezone=True), nullable=False)
    subscription_status = Column(String(16), nullable=False, default="trial")
    plan_type = Column(String(16), nullable=False, default="trial")
    stripe_customer_id = Column(String, nullable=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_payment_method_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self) -> dict:
        """Serialize using the column names the frontend reads."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "trial_start_date": _isoformat(self.trial_start_date),
            "trial_end_date": _isoformat(self.trial_end_date),
            "subscription_status": self.subscription_status,
            "plan_type": self.plan_type,
            "stripe_customer_id": self.stripe_customer_id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_payment_method_id": self.stripe_payment_method_id,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _isoformat(value):
    return as_utc(value).isoformat() if value is not None else None
