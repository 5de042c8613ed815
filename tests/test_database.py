from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from portal.database import (
    Database,
    hash_password,
    parse_datetime,
    resolve_database_path,
    serialize_datetime,
    verify_password,
)
from portal.repositories import UserRepository


@pytest.fixture()
def users(database: Database) -> UserRepository:
    return UserRepository(database)


def test_initialize_is_idempotent(tmp_path: Path) -> None:
    db = Database(tmp_path / "nested" / "portal.sqlite3")
    db.initialize()
    db.initialize()

    tables = {row["name"] for row in db.fetch_all("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"users", "user_roles", "personal_access_tokens", "subscriptions", "api_keys", "password_reset_tokens"} <= tables


def test_resolve_database_path_prefers_environment_value(tmp_path: Path) -> None:
    target = tmp_path / "custom.sqlite3"
    assert resolve_database_path(str(target)) == target.resolve()
    assert resolve_database_path(None).name == "portal.sqlite3"


def test_datetimes_round_trip_as_utc() -> None:
    naive = datetime(2024, 5, 1, 12, 30)
    stored = serialize_datetime(naive)

    assert stored == "2024-05-01T12:30:00+00:00"
    assert parse_datetime(stored) == naive.replace(tzinfo=timezone.utc)
    assert serialize_datetime(None) is None
    assert parse_datetime("") is None


def test_password_hashing() -> None:
    hashed = hash_password("Sup3rSecurePwd!")

    assert hashed != "Sup3rSecurePwd!"
    assert verify_password("Sup3rSecurePwd!", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("Sup3rSecurePwd!", None)
    with pytest.raises(ValueError):
        hash_password("")


def test_create_user_normalizes_email(users: UserRepository) -> None:
    user = users.create({"name": "  Jane  ", "email": " Jane@Example.COM ", "password": "secret-password"})

    assert user.name == "Jane"
    assert user.email == "jane@example.com"
    assert user.uuid
    assert users.find_by_email("JANE@example.com") == user
    assert users.find_by_uuid(user.uuid) == user


def test_create_user_rejects_duplicate_email(users: UserRepository) -> None:
    users.create({"name": "Jane", "email": "jane@example.com", "password": "secret-password"})

    with pytest.raises(ValueError):
        users.create({"name": "Other", "email": "jane@example.com", "password": "secret-password"})


def test_sync_roles_replaces_existing_roles(users: UserRepository) -> None:
    user = users.create({"name": "Jane", "email": "jane@example.com", "password": "secret-password"})

    users.sync_roles(user, ["free"])
    users.sync_roles(user, ["premium", "admin", "premium"])

    assert users.get_roles(user) == ["admin", "premium"]
    refreshed = users.find_by_id(user.id)
    assert refreshed is not None
    assert refreshed.has_role("admin")
    assert not refreshed.has_role("free")


def test_paginated_listing(users: UserRepository) -> None:
    for index in range(5):
        users.create({"name": f"User {index}", "email": f"user{index}@example.com", "password": "secret-password"})

    page, total = users.get_all_paginated(per_page=2, page=3)

    assert total == 5
    assert [user.email for user in page] == ["user4@example.com"]
