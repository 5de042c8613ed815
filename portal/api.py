"""FastAPI application exposing authentication, profile and subscription endpoints."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from . import responses
from .config import Settings, load_settings
from .database import Database, current_timestamp, resolve_database_path
from .errors import BillingError, InvalidCredentials, PortalError, SubscriptionError, ValidationFailed
from .factory import Services, build_services
from .models import User
from .password_reset import ResetStatus
from .schemas import (
    BillingPortalRequest,
    CheckoutRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
    subscription_resource,
    user_resource,
)
from .security import ApiKeyAuth, TokenAuth

logger = logging.getLogger("portal.api")

_RESET_ERROR_MESSAGES = {
    ResetStatus.INVALID_TOKEN: "Invalid or expired password reset token. Please request a new link.",
    ResetStatus.INVALID_USER: "We cannot find a user with that email address.",
    ResetStatus.RESET_THROTTLED: "Please wait before retrying. Too many password reset attempts.",
}


@contextmanager
def _failure_as_server_error(message: str, **context: object) -> Iterator[None]:
    """Log unexpected errors and answer with a generic 500 envelope."""

    try:
        yield
    except (HTTPException, PortalError):
        raise
    except Exception as exc:
        logger.exception("%s (%s)", message, ", ".join(f"{key}={value}" for key, value in context.items()))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message) from exc


def _trusted_proxy_hosts(settings: Settings) -> list[str] | str:
    return settings.trusted_proxies or "*"


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    services: Services | None = None,
) -> FastAPI:
    if services is not None:
        settings = services.settings
        database = services.database
    else:
        if settings is None:
            settings = load_settings()
        if database is None:
            database = Database(resolve_database_path(settings.db_path))
            database.initialize()
        services = build_services(settings, database)

    app = FastAPI(
        title="Portal API",
        description="Authentication, profile and subscription billing API",
        version=settings.app_version,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=_trusted_proxy_hosts(settings))
    app.state.services = services

    api_key_auth = ApiKeyAuth(services.api_keys)
    token_auth = TokenAuth(services.tokens, services.users)

    async def get_current_user(request: Request) -> User:
        return await token_auth(request)

    def _profile_payload(user: User) -> Dict[str, object]:
        return user_resource(user, services.subscription_repository.find_user_subscription(user))

    @app.get("/api/up")
    def healthcheck() -> Dict[str, str]:
        return {
            "status": "up",
            "timestamp": current_timestamp().isoformat(),
            "version": settings.app_version,
        }

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    auth_router = APIRouter(prefix="/api/auth", dependencies=[Depends(api_key_auth)])

    @auth_router.post("/register")
    def register(payload: RegisterRequest):
        user, token = services.auth.register(
            payload.name,
            payload.email,
            payload.password,
            payload.password_confirmation,
        )
        return responses.success(
            {"user": _profile_payload(user), "token": token},
            "User registered successfully",
        )

    @auth_router.post("/login")
    def login(payload: LoginRequest):
        user, token = services.auth.login(payload.email, payload.password)
        return responses.success({"user": _profile_payload(user), "token": token}, "Login successful")

    @auth_router.post("/logout")
    def logout(current_user: User = Depends(get_current_user)):
        services.auth.logout(current_user)
        return responses.success(None, "Logged out successfully")

    @auth_router.post("/forgot-password")
    def forgot_password(payload: ForgotPasswordRequest):
        with _failure_as_server_error("Password reset link request failed", email=payload.email):
            reset_status = services.password_reset.send_reset_link(payload.email)
        if reset_status is not ResetStatus.RESET_LINK_SENT:
            logger.info("Password reset status: %s (email=%s)", reset_status.value, payload.email)
        # Same answer for known, unknown and throttled addresses.
        return responses.success(
            None,
            "If your email exists in our system, you will receive a password reset link shortly.",
        )

    @auth_router.post("/reset-password")
    def reset_password(payload: ResetPasswordRequest):
        with _failure_as_server_error("Password reset failed", email=payload.email):
            reset_status = services.password_reset.reset_password(
                payload.email,
                payload.token,
                payload.password,
                payload.password_confirmation,
            )
        if reset_status is ResetStatus.PASSWORD_RESET:
            return responses.success(None, "Your password has been reset.")
        return responses.error(
            _RESET_ERROR_MESSAGES.get(reset_status, "Unable to reset password. Please try again."),
            status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    user_router = APIRouter(
        prefix="/api/user",
        dependencies=[Depends(api_key_auth), Depends(get_current_user)],
    )

    @user_router.get("/profile")
    def show_profile(current_user: User = Depends(get_current_user)):
        with _failure_as_server_error("Failed to retrieve profile", user_id=current_user.id):
            return responses.success(_profile_payload(current_user))

    @user_router.put("/profile")
    def update_profile(payload: UpdateProfileRequest, current_user: User = Depends(get_current_user)):
        with _failure_as_server_error("Failed to update profile", user_id=current_user.id):
            updated = services.profile.update_profile(current_user, payload.model_dump(exclude_unset=True))
            return responses.success(_profile_payload(updated), "Profile updated successfully")

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------
    subscription_router = APIRouter(
        prefix="/api/subscription",
        dependencies=[Depends(api_key_auth), Depends(get_current_user)],
    )

    @subscription_router.get("")
    def show_subscription(current_user: User = Depends(get_current_user)):
        with _failure_as_server_error("Failed to retrieve subscription information", user_id=current_user.id):
            return responses.success(services.subscriptions.get_subscription_status(current_user))

    @subscription_router.post("/start-trial")
    def start_trial(current_user: User = Depends(get_current_user)):
        if not services.subscriptions.can_start_trial(current_user):
            return responses.error("Unauthorized to start trial", status.HTTP_403_FORBIDDEN)
        with _failure_as_server_error("Failed to start trial", user_uuid=current_user.uuid):
            user = services.subscriptions.start_trial(current_user)
            return responses.success(_profile_payload(user), "Trial started successfully")

    @subscription_router.post("/cancel")
    def cancel_subscription(current_user: User = Depends(get_current_user)):
        with _failure_as_server_error("Failed to cancel subscription", user_uuid=current_user.uuid):
            subscription = services.subscriptions.cancel(current_user)
            return responses.success(subscription_resource(subscription), "Subscription cancelled successfully")

    @subscription_router.post("/resume")
    def resume_subscription(current_user: User = Depends(get_current_user)):
        with _failure_as_server_error("Failed to resume subscription", user_uuid=current_user.uuid):
            subscription = services.subscriptions.resume(current_user)
            return responses.success(subscription_resource(subscription), "Subscription resumed successfully")

    @subscription_router.post("/checkout")
    def checkout(payload: CheckoutRequest, current_user: User = Depends(get_current_user)):
        if services.subscriptions.get_subscription_status(current_user)["has_subscription"]:
            return responses.error("You already have an active subscription or trial", status.HTTP_403_FORBIDDEN)
        with _failure_as_server_error("Failed to create checkout session", user_uuid=current_user.uuid, plan=payload.plan):
            result = services.subscriptions.create_checkout_session(current_user, payload.model_dump())
            return responses.success({"url": result["url"]}, "Checkout session created successfully")

    @subscription_router.post("/billing-portal")
    def billing_portal(payload: Optional[BillingPortalRequest] = None, current_user: User = Depends(get_current_user)):
        data = payload.model_dump() if payload is not None else {}
        with _failure_as_server_error("Failed to create billing portal session", user_uuid=current_user.uuid):
            result = services.subscriptions.create_billing_portal_session(current_user, data)
            return responses.success({"url": result["url"]}, "Billing portal session created successfully")

    @subscription_router.get("/currencies")
    def currencies():
        with _failure_as_server_error("Failed to retrieve available currencies"):
            return responses.success(
                services.subscriptions.get_available_currencies(),
                "Available currencies retrieved successfully",
            )

    @subscription_router.get("/plans")
    def plans(currency: Optional[str] = None):
        with _failure_as_server_error("Failed to retrieve available plans", currency=currency):
            return responses.success(
                services.subscriptions.get_available_plans(currency),
                "Available plans retrieved successfully",
            )

    # ------------------------------------------------------------------
    # Stripe webhook (secured by the Stripe signature instead of an API key)
    # ------------------------------------------------------------------
    @app.post("/api/stripe/webhook")
    async def stripe_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get("stripe-signature")
        try:
            event_id, processed = services.webhooks.process(payload, signature)
        except ValueError as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            return responses.error(str(exc), status.HTTP_400_BAD_REQUEST)
        return responses.success({"event_id": event_id, "processed": processed}, "Webhook handled")

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(subscription_router)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        response = responses.error(str(exc.detail), exc.status_code)
        for name, value in (exc.headers or {}).items():
            response.headers[name] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        return responses.validation_error(responses.format_validation_errors(exc.errors()))

    @app.exception_handler(ValidationFailed)
    async def handle_validation_failed(_: Request, exc: ValidationFailed):
        return responses.validation_error(exc.errors)

    @app.exception_handler(InvalidCredentials)
    async def handle_invalid_credentials(_: Request, exc: InvalidCredentials):
        return responses.error(str(exc), status.HTTP_401_UNAUTHORIZED)

    @app.exception_handler(SubscriptionError)
    async def handle_subscription_error(_: Request, exc: SubscriptionError):
        return responses.error(str(exc), status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(BillingError)
    async def handle_billing_error(_: Request, exc: BillingError):
        logger.error("Billing request failed: %s", exc)
        code = status.HTTP_502_BAD_GATEWAY if exc.configured else status.HTTP_503_SERVICE_UNAVAILABLE
        return responses.error(str(exc), code)

    return app


__all__ = ["create_app"]
