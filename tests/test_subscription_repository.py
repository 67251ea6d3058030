"""
Unit tests for SubscriptionRepository operations
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from crud.subscription import LookupOutcome, SubscriptionRepository
from database_models import UserSubscription, as_utc
from models.subscription import SubscriptionStatus


@pytest.mark.asyncio
async def test_create_trial_and_get_by_user(test_db):
    """
    A newly created trial is a 14-day trial plan readable through get_by_user.
    """
    repo = SubscriptionRepository(test_db)
    start = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)

    created = await repo.create_trial("user-1", now=start)

    assert created.found
    assert created.record.subscription_status == "trial"
    assert created.record.plan_type == "trial"
    assert created.record.stripe_customer_id is None

    fetched = await repo.get_by_user("user-1")

    assert fetched.found
    assert fetched.record.id == created.record.id
    assert as_utc(fetched.record.trial_start_date) == start
    assert as_utc(fetched.record.trial_end_date) == start + timedelta(days=14)


@pytest.mark.asyncio
async def test_get_by_user_without_record_is_not_found(test_db):
    result = await SubscriptionRepository(test_db).get_by_user("nobody")

    assert result.outcome == LookupOutcome.NOT_FOUND
    assert result.record is None
    assert not result.failed


@pytest.mark.asyncio
async def test_create_trial_twice_keeps_first_window(test_db, session_factory):
    """
    The second creation attempt is a no-op: one row, original trial_end_date.
    """
    repo = SubscriptionRepository(test_db)
    first_start = datetime(2026, 5, 1, tzinfo=timezone.utc)

    first = await repo.create_trial("user-1", now=first_start)
    second = await repo.create_trial("user-1", now=first_start + timedelta(days=3))

    assert second.found
    assert second.record.id == first.record.id
    assert as_utc(second.record.trial_end_date) == first_start + timedelta(days=14)

    async with session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(UserSubscription).where(UserSubscription.user_id == "user-1")
        )
    assert count == 1


@pytest.mark.asyncio
async def test_concurrent_insert_falls_back_to_stored_row(session_factory):
    """
    When another request inserted the row between our read and our insert,
    the unique constraint fires and the stored row is returned.
    """
    async with session_factory() as winner_session:
        winner = await SubscriptionRepository(winner_session).create_trial("user-1")
        winner_id = winner.record.id

    async with session_factory() as loser_session:
        repo = SubscriptionRepository(loser_session)
        original_fetch = repo._fetch
        calls = []

        async def racing_fetch(user_id):
            # The existence check runs before the winner's insert is visible
            calls.append(user_id)
            if len(calls) == 1:
                return None
            return await original_fetch(user_id)

        repo._fetch = racing_fetch
        result = await repo.create_trial("user-1")

        assert result.found
        assert result.record.id == winner_id
        assert len(calls) == 2


@pytest.mark.asyncio
async def test_update_status_trial_to_expired(test_db):
    repo = SubscriptionRepository(test_db)
    created = await repo.create_trial("user-1")
    before = as_utc(created.record.updated_at)

    result = await repo.update_status("user-1", SubscriptionStatus.EXPIRED)

    assert result.found
    assert result.record.subscription_status == "expired"
    assert as_utc(result.record.updated_at) >= before


@pytest.mark.asyncio
async def test_update_status_is_idempotent(test_db):
    repo = SubscriptionRepository(test_db)
    await repo.create_trial("user-1")

    first = await repo.update_status("user-1", "expired")
    second = await repo.update_status("user-1", "expired")

    assert first.found and second.found
    assert second.record.subscription_status == "expired"


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE])
async def test_expired_trial_cannot_be_revived_by_status_update(test_db, target):
    repo = SubscriptionRepository(test_db)
    await repo.create_trial("user-1")
    await repo.update_status("user-1", SubscriptionStatus.EXPIRED)

    result = await repo.update_status("user-1", target)

    assert result.outcome == LookupOutcome.INVALID_TRANSITION
    assert result.record.subscription_status == "expired"


@pytest.mark.asyncio
async def test_expired_trial_can_be_cancelled(test_db):
    repo = SubscriptionRepository(test_db)
    await repo.create_trial("user-1")
    await repo.update_status("user-1", SubscriptionStatus.EXPIRED)

    result = await repo.update_status("user-1", SubscriptionStatus.CANCELLED)

    assert result.found
    assert result.record.subscription_status == "cancelled"


@pytest.mark.asyncio
async def test_update_status_without_record_is_not_found(test_db):
    result = await SubscriptionRepository(test_db).update_status("ghost", SubscriptionStatus.EXPIRED)

    assert result.outcome == LookupOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_upgrade_to_enterprise_sets_plan_and_references(test_db):
    repo = SubscriptionRepository(test_db)
    created = await repo.create_trial("user-1")
    trial_end = as_utc(created.record.trial_end_date)
    await repo.update_status("user-1", SubscriptionStatus.EXPIRED)

    result = await repo.upgrade_to_enterprise("user-1", "cus_1", "sub_1", "pm_1")

    assert result.found
    record = result.record
    assert record.plan_type == "enterprise"
    assert record.subscription_status == "active"
    assert (record.stripe_customer_id, record.stripe_subscription_id, record.stripe_payment_method_id) == (
        "cus_1", "sub_1", "pm_1"
    )
    # Trial window is left untouched
    assert as_utc(record.trial_end_date) == trial_end

    by_stripe = await repo.get_by_stripe_subscription("sub_1")
    assert by_stripe.found
    assert by_stripe.record.user_id == "user-1"


@pytest.mark.asyncio
async def test_upgrade_requires_every_stripe_reference(test_db):
    repo = SubscriptionRepository(test_db)
    await repo.create_trial("user-1")

    result = await repo.upgrade_to_enterprise("user-1", "cus_1", "sub_1", None)

    assert result.outcome == LookupOutcome.INVALID_TRANSITION
    fetched = await repo.get_by_user("user-1")
    assert fetched.record.plan_type == "trial"


@pytest.mark.asyncio
async def test_enterprise_record_stays_active(test_db):
    repo = SubscriptionRepository(test_db)
    await repo.create_trial("user-1")
    await repo.upgrade_to_enterprise("user-1", "cus_1", "sub_1", "pm_1")

    result = await repo.update_status("user-1", SubscriptionStatus.EXPIRED)

    assert result.outcome == LookupOutcome.INVALID_TRANSITION
    assert result.record.subscription_status == "active"


@pytest.mark.asyncio
async def test_upgrade_without_record_is_not_found(test_db):
    result = await SubscriptionRepository(test_db).upgrade_to_enterprise("ghost", "cus_1", "sub_1", "pm_1")

    assert result.outcome == LookupOutcome.NOT_FOUND
    assert result.record is None


def _broken_session():
    session = MagicMock()
    session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("database is locked")))
    session.rollback = AsyncMock()
    return session


@pytest.mark.asyncio
@pytest.mark.parametrize("operation, args", [
    ("get_by_user", ("user-1",)),
    ("create_trial", ("user-1",)),
    ("update_status", ("user-1", SubscriptionStatus.EXPIRED)),
    ("upgrade_to_enterprise", ("user-1", "cus_1", "sub_1", "pm_1")),
    ("get_by_stripe_subscription", ("sub_1",)),
])
async def test_store_errors_are_reported_not_raised(operation, args):
    session = _broken_session()
    repo = SubscriptionRepository(session)

    result = await getattr(repo, operation)(*args)

    assert result.outcome == LookupOutcome.PERSISTENCE_FAILURE
    assert result.record is None
    assert "database is locked" in result.error
    session.rollback.assert_awaited()
