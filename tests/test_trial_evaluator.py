"""
Unit tests for the pure trial status evaluation
"""
from datetime import datetime, timedelta, timezone

import pytest

from database_models import UserSubscription
from services.trial_service import evaluate

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(status="trial", plan="trial", trial_end=None, **refs):
    trial_end = trial_end or NOW + timedelta(days=14)
    return UserSubscription(
        id="sub-1",
        user_id="user-1",
        trial_start_date=trial_end - timedelta(days=14),
        trial_end_date=trial_end,
        subscription_status=status,
        plan_type=plan,
        stripe_customer_id=refs.get("customer"),
        stripe_subscription_id=refs.get("subscription"),
        stripe_payment_method_id=refs.get("payment_method"),
    )


def test_missing_record_is_expired():
    status = evaluate(None, NOW)

    assert status.is_expired is True
    assert status.days_remaining == 0
    assert status.is_active is False
    assert status.needs_expiry_reconciliation is False


def test_fresh_trial_reports_fourteen_days():
    status = evaluate(make_record(), NOW)

    assert status.is_expired is False
    assert status.days_remaining == 14
    assert status.is_active is False


@pytest.mark.parametrize("elapsed", [timedelta(seconds=1), timedelta(days=1), timedelta(days=400)])
def test_elapsed_trial_is_expired_and_never_negative(elapsed):
    status = evaluate(make_record(trial_end=NOW - elapsed), NOW)

    assert status.is_expired is True
    assert status.days_remaining == 0
    assert status.is_active is False
    assert status.needs_expiry_reconciliation is True


def test_trial_ending_at_this_instant_is_expired():
    status = evaluate(make_record(trial_end=NOW), NOW)

    assert status.is_expired is True
    assert status.days_remaining == 0


def test_partial_day_rounds_up():
    status = evaluate(make_record(trial_end=NOW + timedelta(minutes=30)), NOW)

    assert status.is_expired is False
    assert status.days_remaining == 1


def test_enterprise_active_is_unlimited_regardless_of_trial_end():
    record = make_record(
        status="active",
        plan="enterprise",
        trial_end=NOW - timedelta(days=90),
        customer="cus_1",
        subscription="sub_1",
        payment_method="pm_1",
    )

    status = evaluate(record, NOW)

    assert status.is_expired is False
    assert status.days_remaining is None
    assert status.is_unlimited is True
    assert status.is_active is True
    assert status.to_dict() == {
        "isExpired": False,
        "daysRemaining": None,
        "isActive": True,
        "isUnlimited": True,
    }


def test_stored_expired_status_wins_over_remaining_time():
    status = evaluate(make_record(status="expired"), NOW)

    assert status.is_expired is True
    assert status.days_remaining == 14
    assert status.needs_expiry_reconciliation is False


def test_cancelled_past_trial_is_expired_but_not_rewritten():
    status = evaluate(make_record(status="cancelled", trial_end=NOW - timedelta(days=2)), NOW)

    assert status.is_expired is True
    assert status.needs_expiry_reconciliation is False


def test_naive_datetimes_are_treated_as_utc():
    record = make_record(trial_end=(NOW + timedelta(days=3)).replace(tzinfo=None))

    status = evaluate(record, NOW)

    assert status.days_remaining == 3
