"""SQLite storage for client API keys."""
from __future__ import annotations

import sqlite3
import uuid
from typing import Dict, List, Mapping, Optional

from ..database import Database, current_timestamp, parse_datetime, serialize_datetime
from ..models import ApiKey
from .interfaces import ApiKeyRepositoryInterface


class ApiKeyRepository(ApiKeyRepositoryInterface):
    def __init__(self, database: Database) -> None:
        self._database = database

    def create(self, data: Mapping[str, object]) -> ApiKey:
        for required in ("name", "key_hash", "service", "environment"):
            if not str(data.get(required) or "").strip():
                raise ValueError(f"{required} must not be empty")

        key_id = str(uuid.uuid4())
        now = serialize_datetime(current_timestamp())
        with self._database.transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO api_keys (
                        id, name, key_hash, service, environment, description,
                        expires_at, is_active, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        key_id,
                        str(data["name"]).strip(),
                        str(data["key_hash"]),
                        str(data["service"]).strip(),
                        str(data["environment"]).strip(),
                        data.get("description"),
                        serialize_datetime(data.get("expires_at")),  # type: ignore[arg-type]
                        int(bool(data.get("is_active", True))),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("An API key with that value already exists") from exc
            row = conn.execute("SELECT * FROM api_keys WHERE id = ?", (key_id,)).fetchone()
        return self._row_to_api_key(row)

    def find(self, key_id: str) -> Optional[ApiKey]:
        row = self._database.fetch_one("SELECT * FROM api_keys WHERE id = ?", (key_id,))
        return self._row_to_api_key(row) if row is not None else None

    def find_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        row = self._database.fetch_one(
            "SELECT * FROM api_keys WHERE key_hash = ? AND deleted_at IS NULL",
            (key_hash,),
        )
        return self._row_to_api_key(row) if row is not None else None

    def get_all(self, *, include_deleted: bool = False, filters: Optional[Dict[str, object]] = None) -> List[ApiKey]:
        clauses: List[str] = []
        values: List[object] = []
        if not include_deleted:
            clauses.append("deleted_at IS NULL")
        for column in ("service", "environment"):
            value = (filters or {}).get(column)
            if value:
                clauses.append(f"{column} = ?")
                values.append(value)
        if filters and filters.get("is_active") is not None:
            clauses.append("is_active = ?")
            values.append(int(bool(filters["is_active"])))

        query = "SELECT * FROM api_keys"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at"
        return [self._row_to_api_key(row) for row in self._database.fetch_all(query, values)]

    def update(self, api_key: ApiKey, data: Mapping[str, object]) -> bool:
        allowed = ("name", "service", "environment", "description", "expires_at", "last_used_at", "is_active")
        updates: List[str] = []
        values: List[object] = []
        for column in allowed:
            if column not in data:
                continue
            value = data[column]
            if column in {"expires_at", "last_used_at"}:
                value = serialize_datetime(value)  # type: ignore[arg-type]
            elif column == "is_active":
                value = int(bool(value))
            updates.append(f"{column} = ?")
            values.append(value)

        if not updates:
            return False

        updates.append("updated_at = ?")
        values.extend([serialize_datetime(current_timestamp()), api_key.id])
        return self._database.execute(f"UPDATE api_keys SET {', '.join(updates)} WHERE id = ?", values) > 0

    def deactivate(self, api_key: ApiKey) -> bool:
        return self.update(api_key, {"is_active": False})

    def delete(self, api_key: ApiKey) -> bool:
        now = serialize_datetime(current_timestamp())
        return (
            self._database.execute(
                "UPDATE api_keys SET deleted_at = ?, is_active = 0, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now, now, api_key.id),
            )
            > 0
        )

    def hash_of(self, api_key: ApiKey) -> Optional[str]:
        row = self._database.fetch_one("SELECT key_hash FROM api_keys WHERE id = ?", (api_key.id,))
        return str(row["key_hash"]) if row is not None else None

    def _row_to_api_key(self, row: sqlite3.Row) -> ApiKey:
        return ApiKey(
            id=str(row["id"]),
            name=str(row["name"]),
            service=str(row["service"]),
            environment=str(row["environment"]),
            is_active=bool(row["is_active"]),
            created_at=parse_datetime(row["created_at"]),  # type: ignore[arg-type]
            description=row["description"],
            expires_at=parse_datetime(row["expires_at"]),
            last_used_at=parse_datetime(row["last_used_at"]),
            deleted_at=parse_datetime(row["deleted_at"]),
        )


__all__ = ["ApiKeyRepository"]
