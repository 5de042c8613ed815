"""Registration, login and logout."""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from .errors import InvalidCredentials, ValidationFailed
from .models import User
from .repositories.interfaces import ActivityLogRepositoryInterface, UserRepositoryInterface
from .tokens import AccessTokenManager

logger = logging.getLogger("portal.auth")

TOKEN_NAME = "auth_token"
DEFAULT_ROLE = "free"


def check_password_confirmation(password: str, confirmation: Optional[str]) -> None:
    if confirmation is None or password != confirmation:
        raise ValidationFailed({"password": "The password field confirmation does not match."})


class AuthService:
    def __init__(
        self,
        users: UserRepositoryInterface,
        tokens: AccessTokenManager,
        activity: ActivityLogRepositoryInterface,
    ) -> None:
        self._users = users
        self._tokens = tokens
        self._activity = activity

    def register(
        self,
        name: str,
        email: str,
        password: str,
        password_confirmation: Optional[str] = None,
    ) -> Tuple[User, str]:
        """Create an account with the ``free`` role and return it with a fresh token."""

        check_password_confirmation(password, password_confirmation)
        if self._users.find_by_email(email) is not None:
            raise ValidationFailed({"email": "The email has already been taken."})

        try:
            user = self._users.create({"name": name, "email": email, "password": password})
        except ValueError as exc:
            # Lost a race with a concurrent registration.
            raise ValidationFailed({"email": "The email has already been taken."}) from exc

        self._users.sync_roles(user, [DEFAULT_ROLE])
        user = self._users.find_by_id(user.id) or user
        token = self._tokens.create_token(user, TOKEN_NAME)
        self._activity.record("registered", user=user)
        logger.info("Registered user %s", user.uuid)
        return user, token.plain_text_token

    def login(self, email: str, password: str) -> Tuple[User, str]:
        """Verify credentials, revoke earlier tokens and issue a new one."""

        user = self._users.find_by_email(email)
        if user is None or not self._users.verify_password(user, password):
            logger.info("Failed login attempt for %s", email)
            raise InvalidCredentials()

        self._tokens.revoke_all(user)
        token = self._tokens.create_token(user, TOKEN_NAME)
        self._activity.record("logged in", user=user)
        return user, token.plain_text_token

    def logout(self, user: User) -> bool:
        self._activity.record("logged out", user=user)
        self._tokens.revoke_all(user)
        return True


__all__ = ["AuthService", "DEFAULT_ROLE", "TOKEN_NAME", "check_password_confirmation"]
