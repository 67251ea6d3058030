"""
Subscription lifecycle types
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PlanType(str, Enum):
    TRIAL = "trial"
    ENTERPRISE = "enterprise"


# Transitions reachable through a plain status update. Reaching ACTIVE is
# reserved for the enterprise upgrade.
ALLOWED_STATUS_TRANSITIONS = {
    SubscriptionStatus.TRIAL: {SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.EXPIRED: {SubscriptionStatus.CANCELLED},
    SubscriptionStatus.CANCELLED: set(),
    SubscriptionStatus.ACTIVE: set(),
}


@dataclass(frozen=True)
class TrialStatus:
    """
    Entitlement state derived from a subscription record.

    days_remaining is None when access is unlimited (active enterprise plan).
    """
    is_expired: bool
    days_remaining: Optional[int]
    is_active: bool
    needs_expiry_reconciliation: bool = False

    @property
    def is_unlimited(self) -> bool:
        return self.days_remaining is None

    def to_dict(self) -> dict:
        return {
            "isExpired": self.is_expired,
            "daysRemaining": self.days_remaining,
            "isActive": self.is_active,
            "isUnlimited": self.is_unlimited,
        }


NO_SUBSCRIPTION_STATUS = TrialStatus(is_expired=True, days_remaining=0, is_active=False)
