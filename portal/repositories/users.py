"""SQLite implementation of :class:`UserRepositoryInterface`."""
from __future__ import annotations

import sqlite3
import uuid
from typing import List, Mapping, Optional, Sequence, Tuple

from ..database import (
    Database,
    current_timestamp,
    hash_password,
    parse_datetime,
    serialize_datetime,
    verify_password,
)
from ..models import User
from .interfaces import UserRepositoryInterface


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserRepository(UserRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def get_all_paginated(self, per_page: int = 15, page: int = 1) -> Tuple[List[User], int]:
        per_page = max(1, int(per_page))
        offset = max(0, int(page) - 1) * per_page
        with self._database.transaction() as conn:
            total = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
            rows = conn.execute(
                "SELECT * FROM users ORDER BY id LIMIT ? OFFSET ?",
                (per_page, offset),
            ).fetchall()
            users = [self._row_to_user(conn, row) for row in rows]
        return users, int(total)

    def get_all(self) -> List[User]:
        with self._database.transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
            return [self._row_to_user(conn, row) for row in rows]

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self._find_one("SELECT * FROM users WHERE id = ?", (int(user_id),))

    def find_by_uuid(self, uuid_value: str) -> Optional[User]:
        return self._find_one("SELECT * FROM users WHERE uuid = ?", (uuid_value,))

    def find_by_email(self, email: str) -> Optional[User]:
        return self._find_one("SELECT * FROM users WHERE email = ?", (normalize_email(email),))

    def find_by_stripe_customer_id(self, customer_id: str) -> Optional[User]:
        if not customer_id:
            return None
        return self._find_one("SELECT * FROM users WHERE stripe_customer_id = ?", (customer_id,))

    def create(self, data: Mapping[str, object]) -> User:
        name = str(data.get("name") or "").strip()
        email = normalize_email(str(data.get("email") or ""))
        password = str(data.get("password") or "")
        if not name:
            raise ValueError("Name must not be empty")
        if not email:
            raise ValueError("Email must not be empty")

        now = serialize_datetime(current_timestamp())
        with self._database.transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (uuid, name, email, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (str(uuid.uuid4()), name, email, hash_password(password), now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            row = conn.execute("SELECT * FROM users WHERE id = ?", (cursor.lastrowid,)).fetchone()
            return self._row_to_user(conn, row)

    def update(self, user: User, data: Mapping[str, object]) -> bool:
        allowed = {
            "name": "name",
            "email": "email",
            "email_verified_at": "email_verified_at",
            "trial_ends_at": "trial_ends_at",
            "stripe_customer_id": "stripe_customer_id",
        }

        updates: List[str] = []
        values: List[object] = []
        for key, column in allowed.items():
            if key not in data:
                continue
            value = data[key]
            if column == "email":
                value = normalize_email(str(value))
            elif column == "name":
                value = str(value).strip()
            elif column in {"email_verified_at", "trial_ends_at"}:
                value = serialize_datetime(value)  # type: ignore[arg-type]
            updates.append(f"{column} = ?")
            values.append(value)

        if data.get("password"):
            updates.append("password_hash = ?")
            values.append(hash_password(str(data["password"])))

        if not updates:
            return False

        updates.append("updated_at = ?")
        values.append(serialize_datetime(current_timestamp()))
        values.append(user.id)
        query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"

        with self._database.transaction() as conn:
            try:
                cursor = conn.execute(query, values)
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            return cursor.rowcount > 0

    def delete(self, user: User) -> bool:
        return self._database.execute("DELETE FROM users WHERE id = ?", (user.id,)) > 0

    def sync_roles(self, user: User, roles: Sequence[str]) -> None:
        unique_roles = sorted({role.strip() for role in roles if role.strip()})
        with self._database.transaction() as conn:
            conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user.id,))
            conn.executemany(
                "INSERT INTO user_roles (user_id, role) VALUES (?, ?)",
                [(user.id, role) for role in unique_roles],
            )

    def get_roles(self, user: User) -> List[str]:
        rows = self._database.fetch_all("SELECT role FROM user_roles WHERE user_id = ? ORDER BY role", (user.id,))
        return [str(row["role"]) for row in rows]

    def verify_password(self, user: User, password: str) -> bool:
        row = self._database.fetch_one("SELECT password_hash FROM users WHERE id = ?", (user.id,))
        if row is None:
            return False
        return verify_password(password, row["password_hash"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _find_one(self, query: str, params: Sequence[object]) -> Optional[User]:
        with self._database.transaction() as conn:
            row = conn.execute(query, tuple(params)).fetchone()
            if row is None:
                return None
            return self._row_to_user(conn, row)

    def _row_to_user(self, conn: sqlite3.Connection, row: sqlite3.Row) -> User:
        roles = conn.execute(
            "SELECT role FROM user_roles WHERE user_id = ? ORDER BY role",
            (row["id"],),
        ).fetchall()
        return User(
            id=int(row["id"]),
            uuid=str(row["uuid"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            updated_at=parse_datetime(row["updated_at"]),  # type: ignore[arg-type]
            email_verified_at=parse_datetime(row["email_verified_at"]),
            trial_ends_at=parse_datetime(row["trial_ends_at"]),
            stripe_customer_id=row["stripe_customer_id"],
            roles=tuple(str(item["role"]) for item in roles),
        )


__all__ = ["UserRepository", "normalize_email"]
