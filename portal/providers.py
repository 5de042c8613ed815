"""Interface-to-implementation bindings registered at application start."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Type, TypeVar

from .database import Database
from .repositories import (
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

logger = logging.getLogger("portal.providers")

T = TypeVar("T")


class Registry:
    """Maps an interface type to a factory producing its implementation.

    Resolved instances are cached, so every consumer of an interface shares
    a single implementation object.
    """

    def __init__(self) -> None:
        self._factories: Dict[type, Callable[[], Any]] = {}
        self._instances: Dict[type, Any] = {}

    def bind(self, interface: Type[T], factory: Callable[[], T]) -> None:
        if interface in self._factories:
            logger.debug("Rebinding %s", interface.__name__)
        self._factories[interface] = factory
        self._instances.pop(interface, None)

    def bound(self, interface: type) -> bool:
        return interface in self._factories

    def resolve(self, interface: Type[T]) -> T:
        if interface in self._instances:
            return self._instances[interface]
        try:
            factory = self._factories[interface]
        except KeyError:
            raise LookupError(f"No implementation bound for {interface.__name__}") from None
        instance = factory()
        if not isinstance(instance, interface):
            raise TypeError(f"{type(instance).__name__} does not implement {interface.__name__}")
        self._instances[interface] = instance
        return instance


def register_subscription_repository(registry: Registry, database: Database) -> None:
    registry.bind(SubscriptionRepositoryInterface, lambda: SubscriptionRepository(database))


def register_user_repository(registry: Registry, database: Database) -> None:
    registry.bind(UserRepositoryInterface, lambda: UserRepository(database))


def register_access_token_repository(registry: Registry, database: Database) -> None:
    registry.bind(AccessTokenRepositoryInterface, lambda: AccessTokenRepository(database))


def register_api_key_repository(registry: Registry, database: Database) -> None:
    registry.bind(ApiKeyRepositoryInterface, lambda: ApiKeyRepository(database))


def register_activity_log_repository(registry: Registry, database: Database) -> None:
    registry.bind(ActivityLogRepositoryInterface, lambda: ActivityLogRepository(database))


def register_password_reset_repository(registry: Registry, database: Database) -> None:
    registry.bind(PasswordResetTokenRepositoryInterface, lambda: PasswordResetTokenRepository(database))


PROVIDERS = (
    register_subscription_repository,
    register_user_repository,
    register_access_token_repository,
    register_api_key_repository,
    register_activity_log_repository,
    register_password_reset_repository,
)


def register_providers(registry: Registry, database: Database) -> Registry:
    for provider in PROVIDERS:
        provider(registry, database)
    return registry


__all__ = [
    "PROVIDERS",
    "Registry",
    "register_access_token_repository",
    "register_activity_log_repository",
    "register_api_key_repository",
    "register_password_reset_repository",
    "register_providers",
    "register_subscription_repository",
    "register_user_repository",
]
