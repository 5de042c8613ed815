"""SQLite storage for personal access tokens."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional, Sequence

from ..database import Database, current_timestamp, dump_json, load_json, parse_datetime, serialize_datetime
from ..models import PersonalAccessToken
from .interfaces import AccessTokenRepositoryInterface


class AccessTokenRepository(AccessTokenRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def create(
        self,
        *,
        token_id: str,
        user_id: int,
        name: str,
        token_hash: str,
        abilities: Sequence[str],
        expires_at: Optional[datetime],
    ) -> PersonalAccessToken:
        now = serialize_datetime(current_timestamp())
        with self._database.transaction() as conn:
            conn.execute(
                """
                INSERT INTO personal_access_tokens (
                    id, user_id, name, token, abilities, expires_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token_id,
                    user_id,
                    name,
                    token_hash,
                    dump_json(list(abilities)),
                    serialize_datetime(expires_at),
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM personal_access_tokens WHERE id = ?", (token_id,)).fetchone()
        return self._row_to_token(row)

    def find(self, token_id: str) -> Optional[PersonalAccessToken]:
        row = self._database.fetch_one("SELECT * FROM personal_access_tokens WHERE id = ?", (token_id,))
        return self._row_to_token(row) if row is not None else None

    def find_by_hash(self, token_hash: str) -> Optional[PersonalAccessToken]:
        row = self._database.fetch_one("SELECT * FROM personal_access_tokens WHERE token = ?", (token_hash,))
        return self._row_to_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> List[PersonalAccessToken]:
        rows = self._database.fetch_all(
            "SELECT * FROM personal_access_tokens WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        )
        return [self._row_to_token(row) for row in rows]

    def touch(self, token: PersonalAccessToken, used_at: datetime) -> None:
        stamp = serialize_datetime(used_at)
        self._database.execute(
            "UPDATE personal_access_tokens SET last_used_at = ?, updated_at = ? WHERE id = ?",
            (stamp, stamp, token.id),
        )

    def delete(self, token: PersonalAccessToken) -> bool:
        return self._database.execute("DELETE FROM personal_access_tokens WHERE id = ?", (token.id,)) > 0

    def delete_for_user(self, user_id: int) -> int:
        return self._database.execute("DELETE FROM personal_access_tokens WHERE user_id = ?", (user_id,))

    def prune_expired(self, before: datetime, *, created_before: Optional[datetime] = None) -> int:
        query = "DELETE FROM personal_access_tokens WHERE (expires_at IS NOT NULL AND expires_at < ?)"
        params: List[object] = [serialize_datetime(before)]
        if created_before is not None:
            query += " OR created_at < ?"
            params.append(serialize_datetime(created_before))
        return self._database.execute(query, params)

    def _row_to_token(self, row: sqlite3.Row) -> PersonalAccessToken:
        abilities = load_json(row["abilities"], ["*"])
        if not isinstance(abilities, list):
            abilities = ["*"]
        return PersonalAccessToken(
            id=str(row["id"]),
            user_id=int(row["user_id"]),
            name=str(row["name"]),
            token_hash=str(row["token"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            abilities=tuple(str(item) for item in abilities),
            last_used_at=parse_datetime(row["last_used_at"]),
            expires_at=parse_datetime(row["expires_at"]),
        )


__all__ = ["AccessTokenRepository"]
