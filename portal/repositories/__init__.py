"""Repository interfaces and their SQLite implementations."""

from __future__ import annotations

from .activity import ActivityLogRepository
from .api_keys import ApiKeyRepository
from .interfaces import (
    AccessTokenRepositoryInterface,
    ActivityLogRepositoryInterface,
    ApiKeyRepositoryInterface,
    PasswordResetTokenRepositoryInterface,
    SubscriptionRepositoryInterface,
    UserRepositoryInterface,
)
from .password_resets import PasswordResetTokenRepository
from .subscriptions import SubscriptionRepository
from .tokens import AccessTokenRepository
from .users import UserRepository

__all__ = [
    "AccessTokenRepository",
    "AccessTokenRepositoryInterface",
    "ActivityLogRepository",
    "ActivityLogRepositoryInterface",
    "ApiKeyRepository",
    "ApiKeyRepositoryInterface",
    "PasswordResetTokenRepository",
    "PasswordResetTokenRepositoryInterface",
    "SubscriptionRepository",
    "SubscriptionRepositoryInterface",
    "UserRepository",
    "UserRepositoryInterface",
]
