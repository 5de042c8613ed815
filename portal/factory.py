"""Composition root: wire repositories into the services used by the API."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from .api_keys import ApiKeyService
from .auth import AuthService
from .billing import StripeBilling, WebhookProcessor
from .config import Settings, SubscriptionCatalog, load_subscription_catalog, resolve_config_path
from .database import Database
from .password_reset import PasswordResetService, ResetLinkNotifier
from .profile import ProfileService
from .providers import Registry, register_providers
from .repositories import (
    AccessTokenRepositoryInterface,
    ActivityLogRepositoryInterface,
    ApiKeyRepositoryInterface,
    PasswordResetTokenRepositoryInterface,
    SubscriptionRepositoryInterface,
    UserRepositoryInterface,
)
from .subscriptions import SubscriptionService
from .tokens import AccessTokenManager

logger = logging.getLogger("portal.factory")


@dataclass(frozen=True)
class Services:
    settings: Settings
    database: Database
    registry: Registry
    users: UserRepositoryInterface
    subscription_repository: SubscriptionRepositoryInterface
    activity: ActivityLogRepositoryInterface
    password_reset_tokens: PasswordResetTokenRepositoryInterface
    tokens: AccessTokenManager
    api_keys: ApiKeyService
    auth: AuthService
    password_reset: PasswordResetService
    profile: ProfileService
    subscriptions: SubscriptionService
    billing: StripeBilling
    webhooks: WebhookProcessor


def build_services(
    settings: Settings,
    database: Database,
    *,
    catalog: Optional[SubscriptionCatalog] = None,
    registry: Optional[Registry] = None,
    billing: Optional[StripeBilling] = None,
    reset_notifier: Optional[ResetLinkNotifier] = None,
) -> Services:
    """Build and wire all services with explicit dependency injection.

    Args:
        settings: Runtime settings.
        database: Initialised database shared by every repository.
        catalog: Plan catalog; loaded from ``settings.subscription_config`` when omitted.
        registry: Bindings to resolve repositories from; defaults to the
            SQLite implementations registered by :func:`register_providers`.
        billing: Stripe wrapper override.
        reset_notifier: Delivers password reset links; defaults to logging them.

    Returns:
        The wired :class:`Services` container.
    """
    if registry is None:
        registry = register_providers(Registry(), database)

    if catalog is None:
        catalog = load_subscription_catalog(
            resolve_config_path(settings.subscription_config),
            trial_days=settings.trial_days,
        )
    if billing is None:
        billing = StripeBilling(settings)

    users = registry.resolve(UserRepositoryInterface)
    subscription_repository = registry.resolve(SubscriptionRepositoryInterface)
    activity = registry.resolve(ActivityLogRepositoryInterface)
    password_reset_tokens = registry.resolve(PasswordResetTokenRepositoryInterface)

    tokens = AccessTokenManager(
        registry.resolve(AccessTokenRepositoryInterface),
        key_factory=uuid.uuid4,
        expiration_minutes=settings.token_expiration_minutes,
    )
    api_keys = ApiKeyService(
        registry.resolve(ApiKeyRepositoryInterface),
        cache_seconds=settings.api_key_cache_seconds,
    )

    services = Services(
        settings=settings,
        database=database,
        registry=registry,
        users=users,
        subscription_repository=subscription_repository,
        activity=activity,
        password_reset_tokens=password_reset_tokens,
        tokens=tokens,
        api_keys=api_keys,
        auth=AuthService(users, tokens, activity),
        password_reset=PasswordResetService(
            users,
            password_reset_tokens,
            tokens,
            activity,
            frontend_url=settings.frontend_url,
            expire_minutes=settings.password_reset_expire_minutes,
            throttle_seconds=settings.password_reset_throttle_seconds,
            notifier=reset_notifier,
        ),
        profile=ProfileService(users, activity),
        subscriptions=SubscriptionService(subscription_repository, users, activity, catalog, billing, settings),
        billing=billing,
        webhooks=WebhookProcessor(database, billing, users, subscription_repository, activity),
    )
    logger.debug("Services wired (billing %s)", "enabled" if billing.enabled else "disabled")
    return services


__all__ = ["Services", "build_services"]
