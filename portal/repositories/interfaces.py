"""Repository contracts that services depend on."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models import ActivityEntry, ApiKey, PasswordResetToken, PersonalAccessToken, Subscription, User


class UserRepositoryInterface(ABC):
    """Persistence operations over :class:`User`."""

    @abstractmethod
    def get_all_paginated(self, per_page: int = 15, page: int = 1) -> Tuple[List[User], int]:
        """Return one page of users and the total number of users."""

    @abstractmethod
    def get_all(self) -> List[User]:
        ...

    @abstractmethod
    def find_by_id(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    def find_by_uuid(self, uuid: str) -> Optional[User]:
        ...

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def find_by_stripe_customer_id(self, customer_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def create(self, data: Mapping[str, object]) -> User:
        """Insert a user. ``data`` carries ``name``, ``email`` and a plain ``password``.

        Raises:
            ValueError: If the email address is already taken.
        """

    @abstractmethod
    def update(self, user: User, data: Mapping[str, object]) -> bool:
        """Update the given columns. A ``password`` key is hashed before storage."""

    @abstractmethod
    def delete(self, user: User) -> bool:
        ...

    @abstractmethod
    def sync_roles(self, user: User, roles: Sequence[str]) -> None:
        ...

    @abstractmethod
    def get_roles(self, user: User) -> List[str]:
        ...

    @abstractmethod
    def verify_password(self, user: User, password: str) -> bool:
        ...


class SubscriptionRepositoryInterface(ABC):
    """Persistence operations over :class:`Subscription`."""

    @abstractmethod
    def find_user_subscription(self, user: User) -> Optional[Subscription]:
        """Return the user's active subscription, else the most recent one, else ``None``."""

    @abstractmethod
    def list_for_user(self, user: User) -> List[Subscription]:
        """Return every subscription of the user, newest first."""

    @abstractmethod
    def create_subscription(self, user: User, data: Mapping[str, object]) -> Subscription:
        ...

    @abstractmethod
    def update_subscription(self, subscription: Subscription, data: Mapping[str, object]) -> bool:
        ...

    @abstractmethod
    def cancel_subscription(self, subscription: Subscription) -> bool:
        """Start the grace period; the row is kept and remains active until ``ends_at``."""

    @abstractmethod
    def resume_subscription(self, subscription: Subscription) -> bool:
        """Clear ``ends_at``.

        Raises:
            ValueError: If the subscription is not on its grace period.
        """

    @abstractmethod
    def is_user_subscribed(self, user: User) -> bool:
        ...

    @abstractmethod
    def is_user_on_trial(self, user: User) -> bool:
        ...

    @abstractmethod
    def start_trial(self, user: User, trial_days: int) -> bool:
        ...

    @abstractmethod
    def find_by_stripe_id(self, stripe_id: str) -> Optional[Subscription]:
        ...

    @abstractmethod
    def update_status(self, subscription: Subscription, status: str) -> bool:
        ...


class AccessTokenRepositoryInterface(ABC):
    """Storage for personal access tokens."""

    @abstractmethod
    def create(
        self,
        *,
        token_id: str,
        user_id: int,
        name: str,
        token_hash: str,
        abilities: Sequence[str],
        expires_at: Optional[datetime],
    ) -> PersonalAccessToken:
        ...

    @abstractmethod
    def find(self, token_id: str) -> Optional[PersonalAccessToken]:
        ...

    @abstractmethod
    def find_by_hash(self, token_hash: str) -> Optional[PersonalAccessToken]:
        ...

    @abstractmethod
    def list_for_user(self, user_id: int) -> List[PersonalAccessToken]:
        ...

    @abstractmethod
    def touch(self, token: PersonalAccessToken, used_at: datetime) -> None:
        ...

    @abstractmethod
    def delete(self, token: PersonalAccessToken) -> bool:
        ...

    @abstractmethod
    def delete_for_user(self, user_id: int) -> int:
        ...

    @abstractmethod
    def prune_expired(self, before: datetime, *, created_before: Optional[datetime] = None) -> int:
        """Delete tokens that expired before ``before`` or were created before ``created_before``."""


class ApiKeyRepositoryInterface(ABC):
    """Storage for client API keys. Keys are looked up by their SHA-256 hash."""

    @abstractmethod
    def create(self, data: Mapping[str, object]) -> ApiKey:
        ...

    @abstractmethod
    def find(self, key_id: str) -> Optional[ApiKey]:
        ...

    @abstractmethod
    def find_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        ...

    @abstractmethod
    def get_all(self, *, include_deleted: bool = False, filters: Optional[Dict[str, object]] = None) -> List[ApiKey]:
        ...

    @abstractmethod
    def update(self, api_key: ApiKey, data: Mapping[str, object]) -> bool:
        ...

    @abstractmethod
    def deactivate(self, api_key: ApiKey) -> bool:
        ...

    @abstractmethod
    def delete(self, api_key: ApiKey) -> bool:
        ...

    @abstractmethod
    def hash_of(self, api_key: ApiKey) -> Optional[str]:
        ...


class ActivityLogRepositoryInterface(ABC):
    """Append-only log of user actions."""

    @abstractmethod
    def record(
        self,
        description: str,
        *,
        user: Optional[User] = None,
        properties: Optional[Mapping[str, object]] = None,
    ) -> ActivityEntry:
        ...

    @abstractmethod
    def list_for_user(self, user: User, limit: int = 50) -> List[ActivityEntry]:
        ...


class PasswordResetTokenRepositoryInterface(ABC):
    """One pending reset token per email address."""

    @abstractmethod
    def store(self, email: str, token_hash: str) -> PasswordResetToken:
        ...

    @abstractmethod
    def find(self, email: str) -> Optional[PasswordResetToken]:
        ...

    @abstractmethod
    def delete(self, email: str) -> bool:
        ...

    @abstractmethod
    def delete_expired(self, before: datetime) -> int:
        ...


__all__ = [
    "AccessTokenRepositoryInterface",
    "ActivityLogRepositoryInterface",
    "ApiKeyRepositoryInterface",
    "PasswordResetTokenRepositoryInterface",
    "SubscriptionRepositoryInterface",
    "UserRepositoryInterface",
]
