"""Request authentication dependencies for the portal API."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .api_keys import ApiKeyService
from .models import ApiKey, User
from .repositories.interfaces import UserRepositoryInterface
from .tokens import AccessTokenManager

logger = logging.getLogger("portal.security")


class ApiKeyAuth:
    """Require a valid client API key, optionally bound to a service and environment."""

    def __init__(
        self,
        api_keys: ApiKeyService,
        *,
        service: Optional[str] = None,
        environment: Optional[str] = None,
    ) -> None:
        self._api_keys = api_keys
        self._service = service
        self._environment = environment

    def for_scope(self, *, service: Optional[str] = None, environment: Optional[str] = None) -> "ApiKeyAuth":
        return ApiKeyAuth(self._api_keys, service=service, environment=environment)

    async def __call__(self, request: Request) -> ApiKey:
        provided = self._api_keys.extract_key_from_request(request)
        if not provided:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key is missing.")

        api_key = self._api_keys.validate_key(provided)
        if api_key is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key.")

        if self._service and api_key.service != self._service:
            logger.warning(
                "API key used with incorrect service (key_service=%s required_service=%s path=%s)",
                api_key.service,
                self._service,
                request.url.path,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This API key is not authorized for this service.",
            )

        if self._environment and api_key.environment != self._environment:
            logger.warning(
                "API key used with incorrect environment (key_environment=%s required_environment=%s path=%s)",
                api_key.environment,
                self._environment,
                request.url.path,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This API key is not authorized for this environment.",
            )

        request.state.api_key = api_key
        return api_key


class TokenAuth:
    """Bearer token authentication against issued personal access tokens."""

    def __init__(self, tokens: AccessTokenManager, users: UserRepositoryInterface) -> None:
        self._tokens = tokens
        self._users = users
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> User:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated.")

        token = self._tokens.authenticate(credentials.credentials)
        if token is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated.")

        user = self._users.find_by_id(token.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthenticated.")

        request.state.access_token = token
        return user


__all__ = ["ApiKeyAuth", "TokenAuth"]
