"""SQLite-backed activity log."""
from __future__ import annotations

import sqlite3
from typing import List, Mapping, Optional

from ..database import Database, current_timestamp, dump_json, load_json, parse_datetime, serialize_datetime
from ..models import ActivityEntry, User
from .interfaces import ActivityLogRepositoryInterface


class ActivityLogRepository(ActivityLogRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def record(
        self,
        description: str,
        *,
        user: Optional[User] = None,
        properties: Optional[Mapping[str, object]] = None,
    ) -> ActivityEntry:
        created_at = current_timestamp()
        payload = dict(properties or {})
        with self._database.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO activity_log (user_id, description, properties, created_at) VALUES (?, ?, ?, ?)",
                (
                    user.id if user is not None else None,
                    description,
                    dump_json(payload),
                    serialize_datetime(created_at),
                ),
            )
            entry_id = cursor.lastrowid
        return ActivityEntry(
            id=int(entry_id),
            description=description,
            created_at=created_at,
            user_id=user.id if user is not None else None,
            properties=payload,
        )

    def list_for_user(self, user: User, limit: int = 50) -> List[ActivityEntry]:
        rows = self._database.fetch_all(
            "SELECT * FROM activity_log WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user.id, int(limit)),
        )
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> ActivityEntry:
        properties = load_json(row["properties"], {})
        return ActivityEntry(
            id=int(row["id"]),
            description=str(row["description"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            user_id=row["user_id"],
            properties=properties if isinstance(properties, dict) else {},
        )


__all__ = ["ActivityLogRepository"]
