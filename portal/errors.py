"""Exceptions raised by portal services and mapped to HTTP responses."""

from __future__ import annotations

from typing import Dict, List, Mapping, Sequence


class PortalError(Exception):
    """Base class for errors the API knows how to render."""


class ValidationFailed(PortalError):
    """Raised when request data fails a rule that needs the database or other fields."""

    def __init__(self, errors: Mapping[str, Sequence[str] | str]) -> None:
        normalized: Dict[str, List[str]] = {}
        for field, messages in errors.items():
            if isinstance(messages, str):
                normalized[field] = [messages]
            else:
                normalized[field] = list(messages)
        self.errors = normalized
        first = next(iter(normalized.values()), ["The given data was invalid."])
        super().__init__(first[0] if first else "The given data was invalid.")


class InvalidCredentials(PortalError):
    """Raised when an email/password pair does not match a user."""

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class SubscriptionError(PortalError):
    """Raised when a subscription action is not allowed for the user."""


class BillingError(PortalError):
    """Raised when Stripe is unavailable or rejects a request."""

    def __init__(self, message: str, *, configured: bool = True) -> None:
        super().__init__(message)
        self.configured = configured


__all__ = [
    "BillingError",
    "InvalidCredentials",
    "PortalError",
    "SubscriptionError",
    "ValidationFailed",
]
