from __future__ import annotations

from datetime import timedelta

import pytest

from portal.database import Database, current_timestamp
from portal.models import User
from portal.repositories import SubscriptionRepository, UserRepository


@pytest.fixture()
def repository(database: Database) -> SubscriptionRepository:
    return SubscriptionRepository(database)


@pytest.fixture()
def user(database: Database) -> User:
    return UserRepository(database).create({"name": "Subscriber", "email": "sub@example.com", "password": "secret-password"})


def test_user_without_subscription(repository: SubscriptionRepository, user: User) -> None:
    assert repository.find_user_subscription(user) is None
    assert not repository.is_user_subscribed(user)
    assert not repository.is_user_on_trial(user)


def test_create_requires_stripe_id_and_status(repository: SubscriptionRepository, user: User) -> None:
    with pytest.raises(ValueError):
        repository.create_subscription(user, {"stripe_status": "active"})
    with pytest.raises(ValueError):
        repository.create_subscription(user, {"stripe_id": "sub_1"})


def test_stripe_id_is_unique(repository: SubscriptionRepository, user: User) -> None:
    repository.create_subscription(user, {"stripe_id": "sub_1", "stripe_status": "active"})

    with pytest.raises(ValueError):
        repository.create_subscription(user, {"stripe_id": "sub_1", "stripe_status": "active"})


def test_active_subscription_counts_as_subscribed(repository: SubscriptionRepository, user: User) -> None:
    created = repository.create_subscription(
        user,
        {"stripe_id": "sub_1", "stripe_status": "active", "stripe_price": "price_monthly_pln", "quantity": 1},
    )

    found = repository.find_user_subscription(user)
    assert found == created
    assert found.id != str(user.id)
    assert repository.is_user_subscribed(user)
    assert repository.find_by_stripe_id("sub_1") == created


def test_incomplete_subscription_is_not_subscribed(repository: SubscriptionRepository, user: User) -> None:
    repository.create_subscription(user, {"stripe_id": "sub_1", "stripe_status": "incomplete"})

    subscription = repository.find_user_subscription(user)
    assert subscription is not None
    assert not subscription.active()
    assert not repository.is_user_subscribed(user)


def test_active_subscription_is_preferred_over_newer_inactive(repository: SubscriptionRepository, user: User) -> None:
    active = repository.create_subscription(user, {"stripe_id": "sub_old", "stripe_status": "active"})
    repository.create_subscription(user, {"stripe_id": "sub_new", "stripe_status": "past_due"})

    assert repository.find_user_subscription(user) == active


def test_cancel_keeps_access_until_period_end(repository: SubscriptionRepository, user: User) -> None:
    period_end = current_timestamp() + timedelta(days=10)
    subscription = repository.create_subscription(
        user,
        {"stripe_id": "sub_1", "stripe_status": "active", "current_period_end": period_end},
    )

    assert repository.cancel_subscription(subscription)

    cancelled = repository.find_by_stripe_id("sub_1")
    assert cancelled is not None
    assert cancelled.ends_at == period_end
    assert cancelled.canceled()
    assert cancelled.on_grace_period()
    assert cancelled.active()
    assert repository.is_user_subscribed(user)


def test_cancel_during_trial_ends_with_trial(repository: SubscriptionRepository, user: User) -> None:
    trial_end = current_timestamp() + timedelta(days=3)
    subscription = repository.create_subscription(
        user,
        {
            "stripe_id": "sub_1",
            "stripe_status": "trialing",
            "trial_ends_at": trial_end,
            "current_period_end": trial_end + timedelta(days=30),
        },
    )

    repository.cancel_subscription(subscription)

    cancelled = repository.find_by_stripe_id("sub_1")
    assert cancelled is not None
    assert cancelled.ends_at == trial_end


def test_cancel_without_period_ends_immediately(repository: SubscriptionRepository, user: User) -> None:
    subscription = repository.create_subscription(user, {"stripe_id": "sub_1", "stripe_status": "active"})

    repository.cancel_subscription(subscription)

    cancelled = repository.find_by_stripe_id("sub_1")
    assert cancelled is not None
    assert cancelled.ended()
    assert not repository.is_user_subscribed(user)


def test_resume_within_grace_period(repository: SubscriptionRepository, user: User) -> None:
    subscription = repository.create_subscription(
        user,
        {"stripe_id": "sub_1", "stripe_status": "active", "current_period_end": current_timestamp() + timedelta(days=5)},
    )
    repository.cancel_subscription(subscription)
    cancelled = repository.find_by_stripe_id("sub_1")
    assert cancelled is not None

    assert repository.resume_subscription(cancelled)

    resumed = repository.find_by_stripe_id("sub_1")
    assert resumed is not None
    assert resumed.ends_at is None
    assert not resumed.canceled()


def test_resume_after_grace_period_fails(repository: SubscriptionRepository, user: User) -> None:
    subscription = repository.create_subscription(
        user,
        {"stripe_id": "sub_1", "stripe_status": "active", "ends_at": current_timestamp() - timedelta(days=1)},
    )

    with pytest.raises(ValueError, match="grace period"):
        repository.resume_subscription(subscription)


def test_update_status(repository: SubscriptionRepository, user: User) -> None:
    subscription = repository.create_subscription(user, {"stripe_id": "sub_1", "stripe_status": "active"})

    assert repository.update_status(subscription, "past_due")
    assert not repository.is_user_subscribed(user)
    with pytest.raises(ValueError):
        repository.update_status(subscription, "")


def test_start_trial_sets_user_trial(repository: SubscriptionRepository, user: User, database: Database) -> None:
    assert repository.start_trial(user, 14)

    assert repository.is_user_on_trial(user)
    refreshed = UserRepository(database).find_by_id(user.id)
    assert refreshed is not None
    assert refreshed.on_trial()
    remaining = refreshed.trial_ends_at - current_timestamp()
    assert timedelta(days=13) < remaining <= timedelta(days=14)


def test_subscription_trial_counts_as_trial(repository: SubscriptionRepository, user: User) -> None:
    repository.create_subscription(
        user,
        {"stripe_id": "sub_1", "stripe_status": "trialing", "trial_ends_at": current_timestamp() + timedelta(days=7)},
    )

    assert repository.is_user_on_trial(user)
