"""Configuration management for the portal API."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


@dataclass(frozen=True)
class Currency:
    """A currency customers can be billed in."""

    code: str
    name: str
    symbol: str
    default: bool = False


@dataclass(frozen=True)
class PlanPrice:
    """Stripe price for a plan in a single currency."""

    currency: str
    stripe_id: str
    fallback_price: float


@dataclass(frozen=True)
class Plan:
    """A purchasable subscription plan."""

    key: str
    name: str
    interval: str
    prices: Dict[str, PlanPrice]

    @staticmethod
    def from_dict(key: str, data: Dict[str, object]) -> "Plan":
        """Create a :class:`Plan` from the raw YAML mapping."""
        required_fields = {"name", "interval", "currencies"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Plan '{key}' is missing fields: {', '.join(sorted(missing))}")

        currencies = data["currencies"]
        if not isinstance(currencies, dict) or not currencies:
            raise ValueError(f"Plan '{key}' must define at least one currency")

        prices: Dict[str, PlanPrice] = {}
        for code, raw_price in currencies.items():
            if not isinstance(raw_price, dict) or "stripe_id" not in raw_price:
                raise ValueError(f"Plan '{key}' currency {code} must define a stripe_id")
            normalized = str(code).upper()
            stripe_id = os.getenv(str(raw_price.get("stripe_id_env", "")), "") or str(raw_price["stripe_id"])
            prices[normalized] = PlanPrice(
                currency=normalized,
                stripe_id=stripe_id,
                fallback_price=float(raw_price.get("fallback_price", 0)),
            )

        return Plan(key=key, name=str(data["name"]), interval=str(data["interval"]), prices=prices)

    def price_for(self, currency: str) -> Optional[PlanPrice]:
        return self.prices.get(currency.upper())


class SubscriptionCatalog:
    """Read-only registry of plans and currencies."""

    def __init__(self, plans: Iterable[Plan], currencies: Iterable[Currency], *, trial_days: int = 30) -> None:
        self._plans: Dict[str, Plan] = {plan.key: plan for plan in plans}
        self._currencies: Dict[str, Currency] = {currency.code: currency for currency in currencies}
        if not self._currencies:
            raise ValueError("Subscription catalog must define at least one currency")
        self.trial_days = trial_days

    def plan(self, key: str) -> Optional[Plan]:
        return self._plans.get(key)

    def plans(self) -> List[Plan]:
        return list(self._plans.values())

    def currencies(self) -> List[Currency]:
        return list(self._currencies.values())

    def has_currency(self, code: str) -> bool:
        return code.upper() in self._currencies

    @property
    def default_currency(self) -> Currency:
        for currency in self._currencies.values():
            if currency.default:
                return currency
        return next(iter(self._currencies.values()))


def load_subscription_catalog(config_path: Path, *, trial_days: Optional[int] = None) -> SubscriptionCatalog:
    """Load plans and currencies from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    plans_raw = raw.get("plans") or {}
    currencies_raw = raw.get("currencies")
    if not currencies_raw:
        raise ValueError("Subscription configuration must define currencies under the 'currencies' key")

    plans = [Plan.from_dict(str(key), value) for key, value in plans_raw.items()]
    currencies = [
        Currency(
            code=str(code).upper(),
            name=str(value.get("name", code)),
            symbol=str(value.get("symbol", "")),
            default=bool(value.get("default", False)),
        )
        for code, value in currencies_raw.items()
    ]
    resolved_trial_days = trial_days if trial_days is not None else int(raw.get("trial_days", 30))
    return SubscriptionCatalog(plans, currencies, trial_days=resolved_trial_days)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the subscription catalog."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "subscription.yaml").resolve(strict=False)


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment."""

    db_path: Optional[str] = None
    app_version: str = "1.0.0"
    frontend_url: str = "http://localhost:3000"
    # None keeps tokens valid until they are revoked.
    token_expiration_minutes: Optional[int] = None
    api_key_cache_seconds: int = 300
    password_reset_expire_minutes: int = 60
    # Minimum gap between two reset links for the same address.
    password_reset_throttle_seconds: int = 60
    trial_days: Optional[int] = None
    subscription_config: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    trusted_proxies: List[str] = field(default_factory=list)

    @property
    def billing_enabled(self) -> bool:
        return bool(self.stripe_secret_key)


def load_settings() -> Settings:
    proxies = os.getenv("PORTAL_TRUSTED_PROXIES", "")
    return Settings(
        db_path=os.getenv("PORTAL_DB_PATH"),
        app_version=os.getenv("PORTAL_APP_VERSION", "1.0.0"),
        frontend_url=os.getenv("PORTAL_FRONTEND_URL", "http://localhost:3000").rstrip("/"),
        token_expiration_minutes=_env_int("PORTAL_TOKEN_EXPIRATION_MINUTES", None),
        api_key_cache_seconds=_env_int("PORTAL_API_KEY_CACHE_SECONDS", 300) or 0,
        password_reset_expire_minutes=_env_int("PORTAL_PASSWORD_RESET_EXPIRE_MINUTES", 60) or 60,
        password_reset_throttle_seconds=_env_int("PORTAL_PASSWORD_RESET_THROTTLE_SECONDS", 60) or 0,
        trial_days=_env_int("PORTAL_TRIAL_DAYS", None),
        subscription_config=os.getenv("PORTAL_SUBSCRIPTION_CONFIG"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        trusted_proxies=[item.strip() for item in proxies.split(",") if item.strip()],
    )


__all__ = [
    "Currency",
    "Plan",
    "PlanPrice",
    "Settings",
    "SubscriptionCatalog",
    "load_settings",
    "load_subscription_catalog",
    "resolve_config_path",
]
