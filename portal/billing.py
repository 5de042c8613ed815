"""Stripe integration: Checkout, billing portal and webhook processing."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from .config import Settings
from .database import Database, current_timestamp, serialize_datetime
from .errors import BillingError
from .models import Subscription, User
from .repositories.interfaces import (
    ActivityLogRepositoryInterface,
    SubscriptionRepositoryInterface,
    UserRepositoryInterface,
)

logger = logging.getLogger("portal.billing")

_STATUS_MAP = {
    "active": "active",
    "trialing": "trial",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "canceled",
    "incomplete": "incomplete",
    "incomplete_expired": "expired",
}

# Stripe statuses that grant the premium role.
_PREMIUM_STATUSES = frozenset({"active", "trialing"})


def map_stripe_status(status: Optional[str]) -> str:
    """Translate a Stripe subscription status into the status reported to clients."""

    return _STATUS_MAP.get(status or "", "unknown")


def timestamp_to_datetime(ts: int | float | None) -> Optional[datetime]:
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _first_price_id(subscription: Mapping[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    price_id = price.get("id")
    return str(price_id) if price_id else None


def period_end_of(subscription: Mapping[str, Any]) -> Optional[datetime]:
    period_end = subscription.get("current_period_end")
    if period_end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            period_end = items[0].get("current_period_end")
    return timestamp_to_datetime(period_end)


def _get_stripe(settings: Settings):
    if not settings.stripe_secret_key:
        raise BillingError("Billing is not configured", configured=False)
    try:
        import stripe  # type: ignore
    except ImportError as exc:
        raise BillingError(
            "Stripe selected but the 'stripe' package is not installed. Install stripe and try again.",
            configured=False,
        ) from exc

    stripe.api_key = settings.stripe_secret_key
    return stripe


class StripeBilling:
    """Thin wrapper around the Stripe client used by the subscription service."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.billing_enabled

    def create_customer(self, user: User) -> str:
        stripe = _get_stripe(self._settings)
        try:
            customer = stripe.Customer.create(
                email=user.email,
                name=user.name,
                metadata={"user_uuid": user.uuid},
            )
        except stripe.StripeError as exc:
            raise BillingError(f"Stripe customer creation failed: {exc}") from exc
        return str(customer.get("id"))

    def create_checkout_session(self, params: Dict[str, Any]) -> Tuple[str, str]:
        """Create a Checkout Session and return ``(session_id, url)``."""
        stripe = _get_stripe(self._settings)
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            raise BillingError(f"Stripe checkout failed: {exc}") from exc
        url = session.get("url")
        if not url:
            raise BillingError("Stripe did not return a checkout URL")
        return str(session.get("id")), str(url)

    def create_billing_portal_session(self, *, customer_id: str, return_url: str) -> Tuple[str, str]:
        stripe = _get_stripe(self._settings)
        try:
            session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe.StripeError as exc:
            raise BillingError(f"Stripe billing portal failed: {exc}") from exc
        url = session.get("url")
        if not url:
            raise BillingError("Stripe did not return a billing portal URL")
        return str(session.get("id")), str(url)

    def set_cancel_at_period_end(self, stripe_subscription_id: str, cancel: bool) -> None:
        stripe = _get_stripe(self._settings)
        try:
            stripe.Subscription.modify(stripe_subscription_id, cancel_at_period_end=cancel)
        except stripe.StripeError as exc:
            raise BillingError(f"Stripe subscription update failed: {exc}") from exc

    def retrieve_subscription(self, stripe_subscription_id: str) -> Optional[Mapping[str, Any]]:
        stripe = _get_stripe(self._settings)
        try:
            return stripe.Subscription.retrieve(stripe_subscription_id)
        except stripe.StripeError as exc:
            logger.warning("Could not retrieve Stripe subscription %s: %s", stripe_subscription_id, exc)
            return None

    def find_current_subscription(self, customer_id: str) -> Optional[Mapping[str, Any]]:
        """Return the customer's first active, trialing or past-due subscription in Stripe."""
        stripe = _get_stripe(self._settings)
        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
        except stripe.StripeError as exc:
            raise BillingError(f"Stripe subscription lookup failed: {exc}") from exc
        for subscription in subscriptions.get("data") or []:
            if subscription.get("status") in {"active", "trialing", "past_due"}:
                return subscription
        return None

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Mapping[str, Any]:
        stripe = _get_stripe(self._settings)
        if not self._settings.stripe_webhook_secret:
            raise BillingError("Stripe webhook secret is not configured", configured=False)
        if not signature:
            raise ValueError("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, self._settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise ValueError("Invalid Stripe signature") from exc


class WebhookProcessor:
    """Apply Stripe webhook events to local users and subscriptions."""

    def __init__(
        self,
        database: Database,
        billing: StripeBilling,
        users: UserRepositoryInterface,
        subscriptions: SubscriptionRepositoryInterface,
        activity: ActivityLogRepositoryInterface,
    ) -> None:
        self._database = database
        self._billing = billing
        self._users = users
        self._subscriptions = subscriptions
        self._activity = activity

    def process(self, payload: bytes, signature: Optional[str]) -> Tuple[str, bool]:
        """Verify and process a webhook request.

        Returns ``(event_id, processed)``; ``processed`` is ``False`` for an
        event id that was already handled.
        """
        event = self._billing.construct_event(payload, signature)
        return self.handle_event(event)

    def handle_event(self, event: Mapping[str, Any]) -> Tuple[str, bool]:
        event_id = str(event.get("id") or "")
        event_type = str(event.get("type") or "")
        if not event_id:
            raise ValueError("Stripe event is missing an id")

        claimed = self._database.execute(
            "INSERT OR IGNORE INTO stripe_events (event_id, event_type, received_at) VALUES (?, ?, ?)",
            (event_id, event_type, serialize_datetime(current_timestamp())),
        )
        if not claimed:
            logger.info("Skipping already processed Stripe event %s", event_id)
            return event_id, False

        obj = (event.get("data") or {}).get("object") or {}
        try:
            if event_type == "checkout.session.completed":
                self._handle_checkout_completed(obj)
            elif event_type.startswith("customer.subscription."):
                self._handle_subscription_event(event_type, obj)
            elif event_type == "invoice.payment_succeeded":
                self._handle_payment_succeeded(obj)
            elif event_type == "invoice.payment_failed":
                self._handle_payment_failed(obj)
            else:
                logger.debug("Ignoring Stripe event %s of type %s", event_id, event_type)
        except Exception:
            # Forget the event so that Stripe's retry can process it again.
            self._database.execute("DELETE FROM stripe_events WHERE event_id = ?", (event_id,))
            raise

        return event_id, True

    def _handle_checkout_completed(self, session: Mapping[str, Any]) -> None:
        customer_id = session.get("customer")
        user = self._user_for_session(session)
        if user is None:
            logger.warning("checkout.session.completed could not be mapped to a user (customer %s)", customer_id)
            return

        if customer_id and user.stripe_customer_id != customer_id:
            self._users.update(user, {"stripe_customer_id": str(customer_id)})
            user = self._users.find_by_id(user.id) or user

        subscription_id = session.get("subscription")
        if not subscription_id:
            return
        stripe_subscription = self._billing.retrieve_subscription(str(subscription_id))
        if stripe_subscription is not None:
            self._sync_subscription(user, stripe_subscription)

    def _handle_subscription_event(self, event_type: str, stripe_subscription: Mapping[str, Any]) -> None:
        customer_id = stripe_subscription.get("customer")
        if not customer_id:
            return
        user = self._users.find_by_stripe_customer_id(str(customer_id))
        if user is None:
            logger.warning("%s for unknown Stripe customer %s", event_type, customer_id)
            return
        self._sync_subscription(user, stripe_subscription, deleted=event_type.endswith(".deleted"))

    def _handle_payment_succeeded(self, invoice: Mapping[str, Any]) -> None:
        if not invoice.get("subscription"):
            return
        logger.info(
            "Subscription payment succeeded for customer %s (subscription %s)",
            invoice.get("customer"),
            invoice.get("subscription"),
        )
        user = self._users.find_by_stripe_customer_id(str(invoice.get("customer") or ""))
        if user is None:
            logger.warning("User not found for subscription payment (customer %s)", invoice.get("customer"))
            return
        if not user.has_role("premium"):
            self._users.sync_roles(user, self._roles_with(user, "premium"))
        self._activity.record(
            "subscription renewed automatically",
            user=user,
            properties={"subscription_id": invoice.get("subscription"), "invoice_id": invoice.get("id")},
        )

    def _handle_payment_failed(self, invoice: Mapping[str, Any]) -> None:
        if not invoice.get("subscription"):
            return
        attempt_count = invoice.get("attempt_count") or 1
        logger.warning(
            "Subscription payment failed for customer %s (subscription %s, attempt %s)",
            invoice.get("customer"),
            invoice.get("subscription"),
            attempt_count,
        )
        user = self._users.find_by_stripe_customer_id(str(invoice.get("customer") or ""))
        if user is None:
            return
        self._activity.record(
            "subscription payment failed",
            user=user,
            properties={
                "subscription_id": invoice.get("subscription"),
                "invoice_id": invoice.get("id"),
                "attempt_count": attempt_count,
            },
        )

    def _user_for_session(self, session: Mapping[str, Any]) -> Optional[User]:
        reference = session.get("client_reference_id") or (session.get("metadata") or {}).get("user_uuid")
        if reference:
            user = self._users.find_by_uuid(str(reference))
            if user is not None:
                return user
        customer_id = session.get("customer")
        if customer_id:
            return self._users.find_by_stripe_customer_id(str(customer_id))
        return None

    def _sync_subscription(
        self,
        user: User,
        stripe_subscription: Mapping[str, Any],
        *,
        deleted: bool = False,
    ) -> Subscription:
        stripe_id = str(stripe_subscription.get("id") or "")
        status = str(stripe_subscription.get("status") or "incomplete")
        period_end = period_end_of(stripe_subscription)

        if deleted or status == "canceled":
            ends_at = timestamp_to_datetime(stripe_subscription.get("ended_at")) or current_timestamp()
        elif stripe_subscription.get("cancel_at_period_end"):
            ends_at = period_end or current_timestamp()
        else:
            ends_at = None

        data: Dict[str, object] = {
            "stripe_status": status,
            "stripe_price": _first_price_id(stripe_subscription),
            "quantity": ((stripe_subscription.get("items") or {}).get("data") or [{}])[0].get("quantity"),
            "trial_ends_at": timestamp_to_datetime(stripe_subscription.get("trial_end")),
            "ends_at": ends_at,
            "current_period_end": period_end,
        }

        existing = self._subscriptions.find_by_stripe_id(stripe_id)
        if existing is None:
            subscription = self._subscriptions.create_subscription(user, {"stripe_id": stripe_id, **data})
            self._activity.record("subscribed", user=user, properties={"subscription_id": stripe_id})
        else:
            self._subscriptions.update_subscription(existing, data)
            subscription = self._subscriptions.find_by_stripe_id(stripe_id) or existing

        if status in _PREMIUM_STATUSES and not deleted:
            if not user.has_role("premium"):
                self._users.sync_roles(user, self._roles_with(user, "premium"))
        elif deleted or status == "canceled":
            self._users.sync_roles(user, self._roles_with(user, "free"))
        logger.info("Synced Stripe subscription %s for user %s (%s)", stripe_id, user.id, status)
        return subscription

    @staticmethod
    def _roles_with(user: User, role: str) -> list[str]:
        return ["admin", role] if user.has_role("admin") else [role]


__all__ = ["StripeBilling", "WebhookProcessor", "map_stripe_status", "period_end_of", "timestamp_to_datetime"]
