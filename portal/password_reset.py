"""Forgot-password links and token based password resets."""
from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlencode

from .auth import check_password_confirmation
from .database import current_timestamp, sha256_hex
from .models import User
from .repositories.interfaces import (
    ActivityLogRepositoryInterface,
    PasswordResetTokenRepositoryInterface,
    UserRepositoryInterface,
)
from .tokens import AccessTokenManager

logger = logging.getLogger("portal.password_reset")

# Called with the user, the plain-text token and the frontend reset URL.
ResetLinkNotifier = Callable[[User, str, str], None]


class ResetStatus(str, Enum):
    RESET_LINK_SENT = "passwords.sent"
    PASSWORD_RESET = "passwords.reset"
    INVALID_USER = "passwords.user"
    INVALID_TOKEN = "passwords.token"
    RESET_THROTTLED = "passwords.throttled"


def log_reset_link(user: User, token: str, url: str) -> None:
    logger.info("Password reset link generated for user %s", user.uuid)


class PasswordResetService:
    def __init__(
        self,
        users: UserRepositoryInterface,
        reset_tokens: PasswordResetTokenRepositoryInterface,
        tokens: AccessTokenManager,
        activity: ActivityLogRepositoryInterface,
        *,
        frontend_url: str,
        expire_minutes: int = 60,
        throttle_seconds: int = 60,
        notifier: Optional[ResetLinkNotifier] = None,
    ) -> None:
        self._users = users
        self._reset_tokens = reset_tokens
        self._tokens = tokens
        self._activity = activity
        self._frontend_url = frontend_url.rstrip("/")
        self._expire_minutes = expire_minutes
        self._throttle_seconds = throttle_seconds
        self._notifier = notifier or log_reset_link

    def reset_url(self, email: str, token: str) -> str:
        return f"{self._frontend_url}/reset-password?{urlencode({'token': token, 'email': email})}"

    def send_reset_link(self, email: str) -> ResetStatus:
        """Issue a new reset token for ``email`` and hand the link to the notifier.

        Unknown addresses and repeated requests inside the throttle window
        are reported through the returned status; nothing is stored for them.
        """
        user = self._users.find_by_email(email)
        if user is None:
            return ResetStatus.INVALID_USER

        pending = self._reset_tokens.find(user.email)
        if pending is not None and self._recently_created(pending.created_at):
            return ResetStatus.RESET_THROTTLED

        token = secrets.token_hex(32)
        self._reset_tokens.store(user.email, sha256_hex(token))
        self._notifier(user, token, self.reset_url(user.email, token))
        self._activity.record("requested password reset", properties={"email": user.email})
        return ResetStatus.RESET_LINK_SENT

    def reset_password(
        self,
        email: str,
        token: str,
        password: str,
        password_confirmation: Optional[str] = None,
    ) -> ResetStatus:
        check_password_confirmation(password, password_confirmation)

        user = self._users.find_by_email(email)
        if user is None:
            return ResetStatus.INVALID_USER

        pending = self._reset_tokens.find(user.email)
        if (
            pending is None
            or pending.is_expired(self._expire_minutes)
            or not hmac.compare_digest(pending.token_hash, sha256_hex(token))
        ):
            return ResetStatus.INVALID_TOKEN

        self._users.update(user, {"password": password})
        self._reset_tokens.delete(user.email)
        self._tokens.revoke_all(user)
        self._activity.record("reset password", user=user)
        logger.info("Password reset for user %s", user.uuid)
        return ResetStatus.PASSWORD_RESET

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or current_timestamp()) - timedelta(minutes=self._expire_minutes)
        return self._reset_tokens.delete_expired(cutoff)

    def _recently_created(self, created_at: datetime) -> bool:
        if self._throttle_seconds <= 0:
            return False
        return created_at + timedelta(seconds=self._throttle_seconds) > current_timestamp()


__all__ = ["PasswordResetService", "ResetLinkNotifier", "ResetStatus", "log_reset_link"]
