from __future__ import annotations

import pytest

from portal.config import Settings
from portal.database import Database
from portal.factory import build_services
from portal.providers import PROVIDERS, Registry, register_providers
from portal.repositories import (
    AccessTokenRepository,
    AccessTokenRepositoryInterface,
    ActivityLogRepository,
    ActivityLogRepositoryInterface,
    ApiKeyRepository,
    ApiKeyRepositoryInterface,
    PasswordResetTokenRepository,
    PasswordResetTokenRepositoryInterface,
    SubscriptionRepository,
    SubscriptionRepositoryInterface,
    UserRepository,
    UserRepositoryInterface,
)


class RecordingSubscriptionRepository(SubscriptionRepository):
    """Subscription repository that remembers which users were checked."""

    def __init__(self, database: Database) -> None:
        super().__init__(database)
        self.checked = []

    def is_user_subscribed(self, user) -> bool:
        self.checked.append(user.id)
        return super().is_user_subscribed(user)


def test_providers_bind_every_interface(database: Database) -> None:
    registry = register_providers(Registry(), database)

    expected = {
        SubscriptionRepositoryInterface: SubscriptionRepository,
        UserRepositoryInterface: UserRepository,
        AccessTokenRepositoryInterface: AccessTokenRepository,
        ApiKeyRepositoryInterface: ApiKeyRepository,
        ActivityLogRepositoryInterface: ActivityLogRepository,
        PasswordResetTokenRepositoryInterface: PasswordResetTokenRepository,
    }
    assert len(PROVIDERS) == len(expected)
    for interface, implementation in expected.items():
        assert registry.bound(interface)
        assert isinstance(registry.resolve(interface), implementation)


def test_resolve_returns_shared_instance(database: Database) -> None:
    registry = register_providers(Registry(), database)

    assert registry.resolve(UserRepositoryInterface) is registry.resolve(UserRepositoryInterface)


def test_resolve_unbound_interface_fails() -> None:
    with pytest.raises(LookupError):
        Registry().resolve(UserRepositoryInterface)


def test_resolve_rejects_wrong_implementation(database: Database) -> None:
    registry = Registry()
    registry.bind(UserRepositoryInterface, lambda: SubscriptionRepository(database))

    with pytest.raises(TypeError):
        registry.resolve(UserRepositoryInterface)


def test_build_services_uses_registry_bindings(settings: Settings, database: Database) -> None:
    registry = register_providers(Registry(), database)
    registry.bind(SubscriptionRepositoryInterface, lambda: RecordingSubscriptionRepository(database))

    services = build_services(settings, database, registry=registry)
    user = services.users.create({"name": "Wired", "email": "wired@example.com", "password": "secret-password"})
    services.subscriptions.start_trial(user)

    repository = services.subscription_repository
    assert isinstance(repository, RecordingSubscriptionRepository)
    assert repository.checked == [user.id]
    assert services.registry is registry


def test_build_services_shares_repositories(settings: Settings, database: Database) -> None:
    services = build_services(settings, database)

    assert services.users is services.registry.resolve(UserRepositoryInterface)
    assert services.subscription_repository is services.registry.resolve(SubscriptionRepositoryInterface)
    assert services.password_reset_tokens is services.registry.resolve(PasswordResetTokenRepositoryInterface)
    assert not services.billing.enabled
