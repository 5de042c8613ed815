"""Personal access tokens issued to users after registration or login."""
from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from .database import current_timestamp, sha256_hex
from .models import NewAccessToken, PersonalAccessToken, User
from .repositories.interfaces import AccessTokenRepositoryInterface

logger = logging.getLogger("portal.tokens")

KeyFactory = Callable[[], object]

_SECRET_BYTES = 20


class AccessTokenManager:
    """Issue, look up and revoke personal access tokens.

    Token identifiers come from ``key_factory`` (UUID4 by default) so that a
    token row never has a sequential primary key. The plain-text token handed
    to clients has the form ``"<id>|<secret>"``; only the SHA-256 digest of
    the secret is stored.
    """

    def __init__(
        self,
        repository: AccessTokenRepositoryInterface,
        *,
        key_factory: KeyFactory = uuid.uuid4,
        expiration_minutes: Optional[int] = None,
    ) -> None:
        self._repository = repository
        self._key_factory = key_factory
        self._expiration_minutes = expiration_minutes

    def create_token(
        self,
        user: User,
        name: str,
        abilities: Sequence[str] = ("*",),
        expires_at: Optional[datetime] = None,
    ) -> NewAccessToken:
        name = (name or "").strip()
        if not name:
            raise ValueError("Token name must not be empty")

        token_id = str(self._key_factory())
        secret = secrets.token_hex(_SECRET_BYTES)
        token = self._repository.create(
            token_id=token_id,
            user_id=user.id,
            name=name,
            token_hash=sha256_hex(secret),
            abilities=list(abilities) or ["*"],
            expires_at=expires_at,
        )
        logger.debug("Issued access token %s for user %s", token.id, user.id)
        return NewAccessToken(access_token=token, plain_text_token=f"{token.id}|{secret}")

    def find_token(self, plain_text: str) -> Optional[PersonalAccessToken]:
        """Return the stored token matching ``plain_text`` without checking expiry."""

        plain_text = (plain_text or "").strip()
        if not plain_text:
            return None

        if "|" not in plain_text:
            return self._repository.find_by_hash(sha256_hex(plain_text))

        token_id, secret = plain_text.split("|", 1)
        token = self._repository.find(token_id)
        if token is None:
            return None
        if not secrets.compare_digest(token.token_hash, sha256_hex(secret)):
            return None
        return token

    def is_expired(self, token: PersonalAccessToken, now: Optional[datetime] = None) -> bool:
        now = now or current_timestamp()
        if token.expires_at is not None and token.expires_at <= now:
            return True
        if self._expiration_minutes:
            return token.created_at + timedelta(minutes=self._expiration_minutes) <= now
        return False

    def authenticate(self, plain_text: str) -> Optional[PersonalAccessToken]:
        """Resolve a bearer credential to a usable token and record its use."""

        token = self.find_token(plain_text)
        if token is None:
            return None
        now = current_timestamp()
        if self.is_expired(token, now):
            logger.info("Rejected expired access token %s", token.id)
            return None
        self._repository.touch(token, now)
        return token

    def tokens_for(self, user: User) -> list[PersonalAccessToken]:
        return self._repository.list_for_user(user.id)

    def revoke(self, token: PersonalAccessToken) -> bool:
        return self._repository.delete(token)

    def revoke_all(self, user: User) -> int:
        removed = self._repository.delete_for_user(user.id)
        if removed:
            logger.info("Revoked %s access token(s) for user %s", removed, user.id)
        return removed

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        now = now or current_timestamp()
        created_before = None
        if self._expiration_minutes:
            created_before = now - timedelta(minutes=self._expiration_minutes)
        return self._repository.prune_expired(now, created_before=created_before)


__all__ = ["AccessTokenManager", "KeyFactory"]
