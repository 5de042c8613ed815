"""Subscription status, trials, cancellation and Stripe checkout."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .billing import StripeBilling, map_stripe_status, period_end_of, timestamp_to_datetime
from .config import Settings, SubscriptionCatalog
from .database import current_timestamp
from .errors import BillingError, SubscriptionError, ValidationFailed
from .models import Subscription, User
from .repositories.interfaces import (
    ActivityLogRepositoryInterface,
    SubscriptionRepositoryInterface,
    UserRepositoryInterface,
)

logger = logging.getLogger("portal.subscriptions")

# Roles allowed to start the card-less trial.
TRIAL_ELIGIBLE_ROLES = frozenset({"free", "admin"})


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SubscriptionService:
    def __init__(
        self,
        subscriptions: SubscriptionRepositoryInterface,
        users: UserRepositoryInterface,
        activity: ActivityLogRepositoryInterface,
        catalog: SubscriptionCatalog,
        billing: StripeBilling,
        settings: Settings,
    ) -> None:
        self._subscriptions = subscriptions
        self._users = users
        self._activity = activity
        self._catalog = catalog
        self._billing = billing
        self._settings = settings

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def get_subscription_status(self, user: User) -> Dict[str, object]:
        """Describe the user's plan.

        A local subscription that is active wins, then a running trial.
        Users linked to a Stripe customer are looked up in Stripe as a last
        resort when billing is configured.
        """
        on_trial = user.on_trial()
        trial_status: Dict[str, object] = {
            "status": "trial" if on_trial else "free",
            "has_subscription": on_trial,
            "on_trial": on_trial,
            "trial_ends_at": _iso(user.trial_ends_at),
            "source": "local",
        }

        subscription = self._subscriptions.find_user_subscription(user)
        if subscription is not None and subscription.active():
            return {
                "status": subscription.stripe_status,
                "has_subscription": True,
                "on_trial": subscription.on_trial(),
                "trial_ends_at": _iso(subscription.trial_ends_at),
                "plan": self._plan_key_for_price(subscription.stripe_price),
                "ends_at": _iso(subscription.ends_at),
                "canceled": subscription.canceled(),
                "on_grace_period": subscription.on_grace_period(),
                "stripe_subscription_id": subscription.stripe_id,
                "source": "local",
            }

        if on_trial:
            return {**trial_status, "plan": "trial"}

        if not user.stripe_customer_id or not self._billing.enabled:
            return trial_status
        return self._status_from_stripe(user)

    def _status_from_stripe(self, user: User) -> Dict[str, object]:
        try:
            remote = self._billing.find_current_subscription(str(user.stripe_customer_id))
        except BillingError:
            logger.exception("Failed to get subscription status from Stripe for user %s", user.id)
            return {
                "status": "unknown",
                "has_subscription": False,
                "error": "Failed to retrieve subscription data",
                "on_trial": False,
                "trial_ends_at": _iso(user.trial_ends_at),
                "source": "error",
            }

        if remote is None:
            return {
                "status": "free",
                "has_subscription": False,
                "on_trial": False,
                "trial_ends_at": _iso(user.trial_ends_at),
                "source": "stripe",
            }

        status = str(remote.get("status") or "")
        return {
            "status": map_stripe_status(status),
            "has_subscription": True,
            "stripe_status": status,
            "stripe_subscription_id": remote.get("id"),
            "on_trial": status == "trialing",
            "trial_ends_at": _iso(timestamp_to_datetime(remote.get("trial_end"))),
            "current_period_end": _iso(period_end_of(remote)),
            "cancel_at_period_end": bool(remote.get("cancel_at_period_end")),
            "source": "stripe",
        }

    def _plan_key_for_price(self, price_id: Optional[str]) -> Optional[str]:
        if not price_id:
            return None
        for plan in self._catalog.plans():
            if any(price.stripe_id == price_id for price in plan.prices.values()):
                return plan.key
        return None

    # ------------------------------------------------------------------
    # Trials and lifecycle
    # ------------------------------------------------------------------
    @staticmethod
    def can_start_trial(user: User) -> bool:
        return any(user.has_role(role) for role in TRIAL_ELIGIBLE_ROLES)

    def start_trial(self, user: User) -> User:
        if user.trial_ends_at is not None or self._subscriptions.is_user_on_trial(user):
            raise SubscriptionError("You have already used your trial period")
        if self._subscriptions.is_user_subscribed(user):
            raise SubscriptionError("You already have a premium subscription or active trial")

        trial_days = self._catalog.trial_days
        self._subscriptions.start_trial(user, trial_days)
        roles = ["admin", "trial"] if user.has_role("admin") else ["trial"]
        self._users.sync_roles(user, roles)
        self._activity.record("started trial", user=user, properties={"trial_days": trial_days})
        logger.info("User %s started a %s day trial", user.uuid, trial_days)
        return self._users.find_by_id(user.id) or user

    def expire_trials(self, *, dry_run: bool = False) -> Dict[str, int]:
        """Downgrade users whose trial has ended and who never subscribed."""

        results = {"downgraded": 0, "premium_retained": 0, "skipped": 0}
        now = current_timestamp()
        for user in self._users.get_all():
            if user.trial_ends_at is None or user.trial_ends_at > now:
                continue
            if self._subscriptions.is_user_subscribed(user):
                results["premium_retained"] += 1
                if not dry_run and not user.has_role("premium"):
                    self._users.sync_roles(user, ["admin", "premium"] if user.has_role("admin") else ["premium"])
                continue
            if not user.has_role("trial"):
                results["skipped"] += 1
                continue
            results["downgraded"] += 1
            if dry_run:
                continue
            self._users.sync_roles(user, ["admin", "free"] if user.has_role("admin") else ["free"])
            self._activity.record("trial expired", user=user, properties={"trial_ends_at": _iso(user.trial_ends_at)})
            logger.info("Trial expired for user %s; downgraded to free", user.uuid)
        return results

    def cancel(self, user: User) -> Subscription:
        """Cancel at the end of the billing period; access continues until then."""

        subscription = self._subscriptions.find_user_subscription(user)
        if subscription is None or not subscription.active():
            raise SubscriptionError("You do not have an active subscription")
        if subscription.canceled():
            raise SubscriptionError("Your subscription is already cancelled")

        if self._billing.enabled:
            subscription = self._with_remote_period_end(subscription)
            self._billing.set_cancel_at_period_end(subscription.stripe_id, True)
        self._subscriptions.cancel_subscription(subscription)
        self._activity.record("cancelled subscription", user=user, properties={"subscription_id": subscription.stripe_id})
        return self._subscriptions.find_by_stripe_id(subscription.stripe_id) or subscription

    def _with_remote_period_end(self, subscription: Subscription) -> Subscription:
        """Fill in ``current_period_end`` from Stripe so local access ends with the paid period."""

        if subscription.current_period_end is not None:
            return subscription
        remote = self._billing.retrieve_subscription(subscription.stripe_id)
        period_end = period_end_of(remote) if remote is not None else None
        if period_end is None:
            logger.warning("No billing period end known for subscription %s", subscription.stripe_id)
            return subscription
        self._subscriptions.update_subscription(subscription, {"current_period_end": period_end})
        return self._subscriptions.find_by_stripe_id(subscription.stripe_id) or subscription

    def resume(self, user: User) -> Subscription:
        subscription = self._subscriptions.find_user_subscription(user)
        if subscription is None or not subscription.on_grace_period():
            raise SubscriptionError("Unable to resume subscription that is not within grace period.")

        if self._billing.enabled:
            self._billing.set_cancel_at_period_end(subscription.stripe_id, False)
        try:
            self._subscriptions.resume_subscription(subscription)
        except ValueError as exc:
            raise SubscriptionError(str(exc)) from exc
        self._activity.record("resumed subscription", user=user, properties={"subscription_id": subscription.stripe_id})
        return self._subscriptions.find_by_stripe_id(subscription.stripe_id) or subscription

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def get_available_currencies(self) -> List[Dict[str, object]]:
        return [
            {"code": currency.code, "name": currency.name, "symbol": currency.symbol, "default": currency.default}
            for currency in self._catalog.currencies()
        ]

    def get_available_plans(self, currency: Optional[str] = None) -> List[Dict[str, object]]:
        code = (currency or self._catalog.default_currency.code).upper()
        if not self._catalog.has_currency(code):
            raise ValidationFailed({"currency": "The selected currency is invalid."})

        plans: List[Dict[str, object]] = []
        for plan in self._catalog.plans():
            price = plan.price_for(code)
            if price is None:
                continue
            plans.append(
                {
                    "key": plan.key,
                    "name": plan.name,
                    "interval": plan.interval,
                    "currency": code,
                    "price": price.fallback_price,
                    "stripe_price_id": price.stripe_id,
                }
            )
        return plans

    # ------------------------------------------------------------------
    # Stripe sessions
    # ------------------------------------------------------------------
    def create_checkout_session(self, user: User, data: Mapping[str, Any]) -> Dict[str, str]:
        mode = str(data.get("mode") or "subscription")
        plan_key = data.get("plan")
        currency = str(data.get("currency") or self._catalog.default_currency.code).upper()
        if not self._catalog.has_currency(currency):
            raise ValidationFailed({"currency": "The selected currency is invalid."})

        price_id: Optional[str] = None
        if plan_key is not None:
            plan = self._catalog.plan(str(plan_key))
            if plan is None:
                raise ValidationFailed({"plan": "Invalid plan selected"})
            price = plan.price_for(currency)
            if price is None:
                raise ValidationFailed({"currency": f"Plan '{plan.key}' is not available in {currency}"})
            price_id = price.stripe_id

        frontend = self._settings.frontend_url
        params: Dict[str, Any] = {
            "customer": self._stripe_customer_id(user),
            "success_url": data.get("success_url") or f"{frontend}/subscription/success",
            "cancel_url": data.get("cancel_url") or f"{frontend}/subscription/cancel",
            "mode": mode,
            "client_reference_id": user.uuid,
            "metadata": {"user_uuid": user.uuid},
        }
        if mode == "subscription" and price_id:
            params["line_items"] = [{"price": price_id, "quantity": 1}]
        trial_days = data.get("trial_days")
        if trial_days:
            params["subscription_data"] = {"trial_period_days": int(trial_days)}

        session_id, url = self._billing.create_checkout_session(params)
        self._activity.record(
            "created checkout session",
            user=user,
            properties={"plan": plan_key, "mode": mode, "session_id": session_id},
        )
        return {"url": url, "session_id": session_id}

    def create_billing_portal_session(self, user: User, data: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
        if not user.stripe_customer_id:
            raise ValidationFailed({"customer": "User does not have a Stripe customer ID"})
        return_url = (data or {}).get("return_url") or f"{self._settings.frontend_url}/account"
        session_id, url = self._billing.create_billing_portal_session(
            customer_id=user.stripe_customer_id,
            return_url=str(return_url),
        )
        self._activity.record("accessed billing portal", user=user, properties={"session_id": session_id})
        return {"url": url, "session_id": session_id}

    def _stripe_customer_id(self, user: User) -> str:
        if user.stripe_customer_id:
            return user.stripe_customer_id
        customer_id = self._billing.create_customer(user)
        self._users.update(user, {"stripe_customer_id": customer_id})
        return customer_id


__all__ = ["SubscriptionService", "TRIAL_ELIGIBLE_ROLES"]
