import sys
from pathlib import Path
from typing import Dict, Tuple

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.api import create_app
from portal.config import Settings
from portal.database import Database
from portal.factory import Services, build_services


API_KEY = "test_dev_default_api_key"
API_HEADERS = {"X-API-KEY": API_KEY}
PASSWORD = "current-password"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=str(tmp_path / "portal.sqlite3"), frontend_url="https://app.example.com")


@pytest.fixture
def database(settings: Settings) -> Database:
    db = Database(Path(settings.db_path))
    db.initialize()
    return db


@pytest.fixture
def services(settings: Settings, database: Database) -> Services:
    built = build_services(settings, database)
    built.api_keys.seed_default_keys()
    return built


@pytest.fixture
def client(services: Services) -> TestClient:
    return TestClient(create_app(services=services))


def auth_headers(token: str) -> Dict[str, str]:
    return {**API_HEADERS, "Authorization": f"Bearer {token}"}


def register_user(
    client: TestClient,
    *,
    name: str = "John Doe",
    email: str = "john@example.com",
    password: str = PASSWORD,
) -> Tuple[dict, str]:
    response = client.post(
        "/api/auth/register",
        json={
            "name": name,
            "email": email,
            "password": password,
            "password_confirmation": password,
        },
        headers=API_HEADERS,
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    return data["user"], data["token"]
