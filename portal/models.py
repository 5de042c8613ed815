"""Domain models for the portal API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Statuses that never count as an active subscription, regardless of ends_at.
INACTIVE_STRIPE_STATUSES = frozenset({"incomplete", "incomplete_expired", "unpaid", "past_due"})


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the portal database."""

    id: int
    uuid: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime
    email_verified_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    roles: Tuple[str, ...] = ()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def on_trial(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` while the generic (card-less) trial is running."""

        if self.trial_ends_at is None:
            return False
        return self.trial_ends_at > (now or utcnow())


@dataclass(frozen=True)
class Subscription:
    """A Stripe-backed subscription owned by a single user."""

    id: str
    user_id: int
    type: str
    stripe_id: str
    stripe_status: str
    created_at: datetime
    updated_at: datetime
    stripe_price: Optional[str] = None
    quantity: Optional[int] = None
    trial_ends_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    def on_trial(self, now: Optional[datetime] = None) -> bool:
        return self.trial_ends_at is not None and self.trial_ends_at > (now or utcnow())

    def on_grace_period(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at is not None and self.ends_at > (now or utcnow())

    def canceled(self) -> bool:
        return self.ends_at is not None

    def ended(self, now: Optional[datetime] = None) -> bool:
        return self.canceled() and not self.on_grace_period(now)

    def active(self, now: Optional[datetime] = None) -> bool:
        """Return ``True`` when the subscription currently grants access.

        A cancelled subscription stays active until ``ends_at`` passes.
        """

        if self.stripe_status in INACTIVE_STRIPE_STATUSES:
            return False
        return self.ends_at is None or self.on_grace_period(now)

    def valid(self, now: Optional[datetime] = None) -> bool:
        return self.active(now) or self.on_trial(now) or self.on_grace_period(now)


@dataclass(frozen=True)
class PersonalAccessToken:
    """An issued API credential identified by a UUID."""

    id: str
    user_id: int
    name: str
    token_hash: str
    created_at: datetime
    abilities: Tuple[str, ...] = ("*",)
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def can(self, ability: str) -> bool:
        return "*" in self.abilities or ability in self.abilities

    def cant(self, ability: str) -> bool:
        return not self.can(ability)


@dataclass(frozen=True)
class NewAccessToken:
    """A freshly issued token together with its one-time plain-text form."""

    access_token: PersonalAccessToken
    plain_text_token: str


@dataclass(frozen=True)
class PasswordResetToken:
    email: str
    token_hash: str
    created_at: datetime

    def is_expired(self, minutes: int, now: Optional[datetime] = None) -> bool:
        return self.created_at + timedelta(minutes=minutes) <= (now or utcnow())


@dataclass(frozen=True)
class ApiKey:
    """A client application key checked before any API route runs."""

    id: str
    name: str
    service: str
    environment: str
    is_active: bool
    created_at: datetime
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and (now or utcnow()) > self.expires_at

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and self.deleted_at is None and not self.is_expired(now)


@dataclass(frozen=True)
class ActivityEntry:
    """A user action recorded in the activity log."""

    id: int
    description: str
    created_at: datetime
    user_id: Optional[int] = None
    properties: Dict[str, object] = field(default_factory=dict)


__all__ = [
    "ActivityEntry",
    "ApiKey",
    "INACTIVE_STRIPE_STATUSES",
    "NewAccessToken",
    "PasswordResetToken",
    "PersonalAccessToken",
    "Subscription",
    "User",
    "utcnow",
]
