"""Client API keys that gate every API route."""
from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

from starlette.requests import Request

from .database import current_timestamp, sha256_hex
from .models import ApiKey
from .repositories.interfaces import ApiKeyRepositoryInterface

logger = logging.getLogger("portal.api_keys")

API_KEY_HEADER = "X-API-KEY"
API_KEY_QUERY_PARAM = "api_key"

_KEY_ALPHABET = string.ascii_letters + string.digits
_KEY_LENGTH = 32
_LAST_USED_RESOLUTION = timedelta(minutes=60)

# Development keys seeded into empty databases. Never use these in production.
DEFAULT_DEV_KEYS: Tuple[Dict[str, object], ...] = (
    {
        "key": "test_dev_default_api_key",
        "name": "Test (Development)",
        "service": "test",
        "environment": "development",
        "description": "Default API key for testing in development environment",
        "expires_in_days": None,
    },
    {
        "key": "web_frontend_dev_default_api_key",
        "name": "Web Frontend (Development)",
        "service": "web-frontend",
        "environment": "development",
        "description": "Default API key for web frontend in development environment",
        "expires_in_days": 365,
    },
    {
        "key": "mobile_app_dev_default_api_key",
        "name": "Mobile App (Development)",
        "service": "mobile-app",
        "environment": "development",
        "description": "Default API key for mobile app in development environment",
        "expires_in_days": 365,
    },
)


def generate_key() -> str:
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(_KEY_LENGTH))


def hash_key(key: str) -> str:
    return sha256_hex(key)


class ApiKeyService:
    """Create, validate and revoke API keys.

    Successful lookups are cached in-process for ``cache_seconds`` keyed by
    the key hash. Revoking or deleting a key evicts it from the cache.
    """

    def __init__(self, repository: ApiKeyRepositoryInterface, *, cache_seconds: int = 300) -> None:
        self._repository = repository
        self._cache_seconds = max(0, int(cache_seconds))
        self._cache: Dict[str, Tuple[float, ApiKey]] = {}
        self._lock = threading.Lock()

    def create_key(
        self,
        name: str,
        service: str,
        environment: str,
        description: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[ApiKey, str]:
        """Store a new key and return it together with the one-time plain-text value."""

        plain_text = generate_key()
        api_key = self._repository.create(
            {
                "name": name,
                "key_hash": hash_key(plain_text),
                "service": service,
                "environment": environment,
                "description": description,
                "expires_at": expires_at,
                "is_active": True,
            }
        )
        logger.info("Created API key %s for %s/%s", api_key.id, api_key.service, api_key.environment)
        return api_key, plain_text

    def validate_key(self, key: str) -> Optional[ApiKey]:
        if not key:
            return None

        key_hash = hash_key(key)
        api_key = self._cached(key_hash)
        if api_key is None:
            api_key = self._repository.find_by_hash(key_hash)
            if api_key is None:
                return None
            self._remember(key_hash, api_key)

        now = current_timestamp()
        if not api_key.is_usable(now):
            return None

        if api_key.last_used_at is None or now - api_key.last_used_at > _LAST_USED_RESOLUTION:
            self._repository.update(api_key, {"last_used_at": now})
            api_key = replace(api_key, last_used_at=now)
            self._remember(key_hash, api_key)
        return api_key

    @staticmethod
    def extract_key_from_request(request: Request) -> Optional[str]:
        """Read the key from the ``X-API-KEY`` header, falling back to ``?api_key=``."""

        key = request.headers.get(API_KEY_HEADER)
        if not key:
            key = request.query_params.get(API_KEY_QUERY_PARAM)
        key = (key or "").strip()
        return key or None

    def revoke_key(self, api_key: ApiKey) -> bool:
        revoked = self._repository.deactivate(api_key)
        self._forget(api_key)
        if revoked:
            logger.info("Revoked API key %s", api_key.id)
        return revoked

    def delete_key(self, api_key: ApiKey) -> bool:
        self._forget(api_key)
        deleted = self._repository.delete(api_key)
        if deleted:
            logger.info("Deleted API key %s", api_key.id)
        return deleted

    def find_key(self, key_id: str) -> Optional[ApiKey]:
        return self._repository.find(key_id)

    def list_keys(
        self,
        *,
        include_deleted: bool = False,
        filters: Optional[Mapping[str, object]] = None,
    ) -> List[ApiKey]:
        return self._repository.get_all(include_deleted=include_deleted, filters=dict(filters or {}))

    def seed_default_keys(self) -> List[ApiKey]:
        """Insert the development keys when no key exists yet."""

        if self._repository.get_all(include_deleted=True):
            logger.info("API keys already exist; skipping default key creation")
            return []

        created: List[ApiKey] = []
        now = current_timestamp()
        for entry in DEFAULT_DEV_KEYS:
            days = entry["expires_in_days"]
            created.append(
                self._repository.create(
                    {
                        "name": entry["name"],
                        "key_hash": hash_key(str(entry["key"])),
                        "service": entry["service"],
                        "environment": entry["environment"],
                        "description": entry["description"],
                        "expires_at": now + timedelta(days=int(days)) if days else None,  # type: ignore[arg-type]
                        "is_active": True,
                    }
                )
            )
        logger.info("Seeded %s default API key(s)", len(created))
        return created

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def _cached(self, key_hash: str) -> Optional[ApiKey]:
        if not self._cache_seconds:
            return None
        with self._lock:
            entry = self._cache.get(key_hash)
            if entry is None:
                return None
            expires, api_key = entry
            if expires <= time.monotonic():
                del self._cache[key_hash]
                return None
            return api_key

    def _remember(self, key_hash: str, api_key: ApiKey) -> None:
        if not self._cache_seconds:
            return
        with self._lock:
            self._cache[key_hash] = (time.monotonic() + self._cache_seconds, api_key)

    def _forget(self, api_key: ApiKey) -> None:
        key_hash = self._repository.hash_of(api_key)
        if key_hash is None:
            return
        with self._lock:
            self._cache.pop(key_hash, None)


__all__ = [
    "API_KEY_HEADER",
    "API_KEY_QUERY_PARAM",
    "ApiKeyService",
    "DEFAULT_DEV_KEYS",
    "generate_key",
    "hash_key",
]
