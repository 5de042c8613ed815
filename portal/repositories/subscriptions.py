"""SQLite implementation of :class:`SubscriptionRepositoryInterface`."""
from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import List, Mapping, Optional

from ..database import Database, current_timestamp, parse_datetime, serialize_datetime
from ..models import Subscription, User
from .interfaces import SubscriptionRepositoryInterface

logger = logging.getLogger("portal.repositories.subscriptions")

_DATETIME_COLUMNS = {"trial_ends_at", "ends_at", "current_period_end"}


class SubscriptionRepository(SubscriptionRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def find_user_subscription(self, user: User) -> Optional[Subscription]:
        subscriptions = self.list_for_user(user)
        now = current_timestamp()
        for subscription in subscriptions:
            if subscription.active(now):
                return subscription
        return subscriptions[0] if subscriptions else None

    def list_for_user(self, user: User) -> List[Subscription]:
        rows = self._database.fetch_all(
            "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY created_at DESC, rowid DESC",
            (user.id,),
        )
        return [self._row_to_subscription(row) for row in rows]

    def create_subscription(self, user: User, data: Mapping[str, object]) -> Subscription:
        stripe_id = str(data.get("stripe_id") or "").strip()
        if not stripe_id:
            raise ValueError("stripe_id must not be empty")
        status = str(data.get("stripe_status") or "").strip()
        if not status:
            raise ValueError("stripe_status must not be empty")

        subscription_id = str(uuid.uuid4())
        now = serialize_datetime(current_timestamp())
        quantity = data.get("quantity")
        with self._database.transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO subscriptions (
                        id, user_id, type, stripe_id, stripe_status, stripe_price, quantity,
                        trial_ends_at, ends_at, current_period_end, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        subscription_id,
                        user.id,
                        str(data.get("type") or "default"),
                        stripe_id,
                        status,
                        data.get("stripe_price"),
                        int(quantity) if quantity is not None else None,  # type: ignore[arg-type]
                        serialize_datetime(data.get("trial_ends_at")),  # type: ignore[arg-type]
                        serialize_datetime(data.get("ends_at")),  # type: ignore[arg-type]
                        serialize_datetime(data.get("current_period_end")),  # type: ignore[arg-type]
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A subscription with that Stripe id already exists") from exc
            row = conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)).fetchone()
        return self._row_to_subscription(row)

    def update_subscription(self, subscription: Subscription, data: Mapping[str, object]) -> bool:
        allowed = (
            "type",
            "stripe_status",
            "stripe_price",
            "quantity",
            "trial_ends_at",
            "ends_at",
            "current_period_end",
        )
        updates: List[str] = []
        values: List[object] = []
        for column in allowed:
            if column not in data:
                continue
            value = data[column]
            if column in _DATETIME_COLUMNS:
                value = serialize_datetime(value)  # type: ignore[arg-type]
            elif column == "stripe_status" and not value:
                raise ValueError("stripe_status must not be empty")
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return False
        return self._update(subscription.id, updates, values)

    def cancel_subscription(self, subscription: Subscription) -> bool:
        now = current_timestamp()
        ends_at = self._grace_period_end(subscription, now)
        logger.info("Cancelling subscription %s; access ends at %s", subscription.id, ends_at.isoformat())
        return self._update(subscription.id, ["ends_at = ?"], [serialize_datetime(ends_at)])

    def resume_subscription(self, subscription: Subscription) -> bool:
        if not subscription.on_grace_period():
            raise ValueError("Unable to resume subscription that is not within grace period.")
        return self._update(subscription.id, ["ends_at = ?"], [None])

    def is_user_subscribed(self, user: User) -> bool:
        subscription = self.find_user_subscription(user)
        return subscription is not None and subscription.active()

    def is_user_on_trial(self, user: User) -> bool:
        row = self._database.fetch_one("SELECT trial_ends_at FROM users WHERE id = ?", (user.id,))
        trial_ends_at = parse_datetime(row["trial_ends_at"]) if row is not None else None
        now = current_timestamp()
        if trial_ends_at is not None and trial_ends_at > now:
            return True
        return any(subscription.on_trial(now) for subscription in self.list_for_user(user))

    def start_trial(self, user: User, trial_days: int) -> bool:
        trial_ends_at = current_timestamp() + timedelta(days=int(trial_days))
        rows = self._database.execute(
            "UPDATE users SET trial_ends_at = ?, updated_at = ? WHERE id = ?",
            (serialize_datetime(trial_ends_at), serialize_datetime(current_timestamp()), user.id),
        )
        return rows > 0

    def find_by_stripe_id(self, stripe_id: str) -> Optional[Subscription]:
        row = self._database.fetch_one("SELECT * FROM subscriptions WHERE stripe_id = ?", (stripe_id,))
        if row is None:
            return None
        return self._row_to_subscription(row)

    def update_status(self, subscription: Subscription, status: str) -> bool:
        if not status:
            raise ValueError("stripe_status must not be empty")
        return self._update(subscription.id, ["stripe_status = ?"], [status])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _grace_period_end(subscription: Subscription, now: datetime) -> datetime:
        if subscription.on_trial(now):
            return subscription.trial_ends_at  # type: ignore[return-value]
        if subscription.current_period_end is not None and subscription.current_period_end > now:
            return subscription.current_period_end
        return now

    def _update(self, subscription_id: str, updates: List[str], values: List[object]) -> bool:
        updates = [*updates, "updated_at = ?"]
        params = [*values, serialize_datetime(current_timestamp()), subscription_id]
        query = f"UPDATE subscriptions SET {', '.join(updates)} WHERE id = ?"
        return self._database.execute(query, params) > 0

    def _row_to_subscription(self, row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            type=str(row["type"]),
            stripe_id=str(row["stripe_id"]),
            stripe_status=str(row["stripe_status"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            updated_at=parse_datetime(row["updated_at"]),  # type: ignore[arg-type]
            stripe_price=row["stripe_price"],
            quantity=row["quantity"],
            trial_ends_at=parse_datetime(row["trial_ends_at"]),
            ends_at=parse_datetime(row["ends_at"]),
            current_period_end=parse_datetime(row["current_period_end"]),
        )


__all__ = ["SubscriptionRepository"]
