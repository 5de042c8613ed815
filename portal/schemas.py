"""Request models and response transformers for the portal API."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .models import Subscription, User

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalize_email(value: str) -> str:
    stripped = value.strip()
    if not _EMAIL_PATTERN.match(stripped):
        raise ValueError("must be a valid email address")
    return stripped.lower()


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8)
    password_confirmation: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=8)
    password_confirmation: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8)
    password_confirmation: Optional[str] = None
    current_password: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _normalize_email(value)


class CheckoutRequest(BaseModel):
    plan: Optional[str] = Field(default=None, max_length=64)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    mode: Literal["subscription", "payment", "setup"] = "subscription"
    success_url: Optional[str] = Field(default=None, max_length=2048)
    cancel_url: Optional[str] = Field(default=None, max_length=2048)
    trial_days: Optional[int] = Field(default=None, ge=0)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class BillingPortalRequest(BaseModel):
    return_url: Optional[str] = Field(default=None, max_length=2048)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def subscription_resource(subscription: Optional[Subscription]) -> Optional[Dict[str, object]]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "type": subscription.type,
        "status": subscription.stripe_status,
        "price": subscription.stripe_price,
        "active": subscription.active(),
        "on_trial": subscription.on_trial(),
        "on_grace_period": subscription.on_grace_period(),
        "trial_ends_at": _iso(subscription.trial_ends_at),
        "ends_at": _iso(subscription.ends_at),
    }


def user_resource(user: User, subscription: Optional[Subscription] = None) -> Dict[str, object]:
    """Public representation of a user. Internal ids and secrets are never exposed."""

    roles: List[str] = list(user.roles)
    return {
        "uuid": user.uuid,
        "name": user.name,
        "email": user.email,
        "email_verified_at": _iso(user.email_verified_at),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
        "roles": roles,
        "on_trial": user.on_trial(),
        "trial_ends_at": _iso(user.trial_ends_at),
        "subscription": subscription_resource(subscription),
    }


__all__ = [
    "BillingPortalRequest",
    "CheckoutRequest",
    "ForgotPasswordRequest",
    "LoginRequest",
    "RegisterRequest",
    "ResetPasswordRequest",
    "UpdateProfileRequest",
    "subscription_resource",
    "user_resource",
]
