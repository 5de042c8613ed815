"""SQLite storage for pending password reset tokens."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Optional

from ..database import Database, current_timestamp, parse_datetime, serialize_datetime
from ..models import PasswordResetToken
from .interfaces import PasswordResetTokenRepositoryInterface
from .users import normalize_email


class PasswordResetTokenRepository(PasswordResetTokenRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def store(self, email: str, token_hash: str) -> PasswordResetToken:
        """Replace any pending token for ``email`` with ``token_hash``."""

        email = normalize_email(email)
        created_at = current_timestamp()
        with self._database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO password_reset_tokens (email, token_hash, created_at) VALUES (?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET token_hash = excluded.token_hash, created_at = excluded.created_at
                """,
                (email, token_hash, serialize_datetime(created_at)),
            )
        return PasswordResetToken(email=email, token_hash=token_hash, created_at=created_at)

    def find(self, email: str) -> Optional[PasswordResetToken]:
        row = self._database.fetch_one(
            "SELECT * FROM password_reset_tokens WHERE email = ?",
            (normalize_email(email),),
        )
        return self._row_to_token(row) if row is not None else None

    def delete(self, email: str) -> bool:
        return self._database.execute(
            "DELETE FROM password_reset_tokens WHERE email = ?",
            (normalize_email(email),),
        ) > 0

    def delete_expired(self, before: datetime) -> int:
        return self._database.execute(
            "DELETE FROM password_reset_tokens WHERE created_at < ?",
            (serialize_datetime(before),),
        )

    def _row_to_token(self, row: sqlite3.Row) -> PasswordResetToken:
        return PasswordResetToken(
            email=str(row["email"]),
            token_hash=str(row["token_hash"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
        )


__all__ = ["PasswordResetTokenRepository"]
