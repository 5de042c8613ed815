from fastapi.testclient import TestClient

from conftest import API_HEADERS, API_KEY, auth_headers, register_user
from portal.factory import Services


def test_health_endpoint_reports_version(client: TestClient) -> None:
    response = client.get("/api/up")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "up"
    assert payload["version"] == "1.0.0"
    assert payload["timestamp"]


def test_register_requires_fields(client: TestClient) -> None:
    response = client.post("/api/auth/register", json={}, headers=API_HEADERS)

    assert response.status_code == 422
    payload = response.json()
    assert payload["status"] == "error"
    assert payload["message"] == "The given data was invalid."
    assert set(payload["errors"]) == {"name", "email", "password"}
    assert payload["errors"]["name"] == ["The name field is required."]


def test_register_without_body_is_unprocessable(client: TestClient) -> None:
    response = client.post("/api/auth/register", headers=API_HEADERS)

    assert response.status_code == 422
    assert response.json()["message"] == "The given data was invalid."


def test_login_requires_fields(client: TestClient) -> None:
    response = client.post("/api/auth/login", json={}, headers=API_HEADERS)

    assert response.status_code == 422
    assert set(response.json()["errors"]) == {"email", "password"}


def test_register_rejects_short_password_and_bad_email(client: TestClient) -> None:
    response = client.post(
        "/api/auth/register",
        json={"name": "Jane", "email": "not-an-email", "password": "short", "password_confirmation": "short"},
        headers=API_HEADERS,
    )

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert errors["password"] == ["The password field must be at least 8 characters."]
    assert "email" in errors


def test_missing_api_key_is_rejected_before_validation(client: TestClient) -> None:
    response = client.post("/api/auth/register", json={})

    assert response.status_code == 401
    assert response.json() == {"status": "error", "message": "API key is missing.", "data": None}


def test_invalid_api_key_is_rejected(client: TestClient) -> None:
    response = client.post("/api/auth/login", json={}, headers={"X-API-KEY": "not-a-real-key"})

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid API key."


def test_api_key_accepted_from_query_string(client: TestClient) -> None:
    response = client.post(f"/api/auth/login?api_key={API_KEY}", json={})

    assert response.status_code == 422


def test_profile_requires_bearer_token(client: TestClient) -> None:
    response = client.get("/api/user/profile", headers=API_HEADERS)

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthenticated."


def test_profile_rejects_unknown_token(client: TestClient) -> None:
    response = client.get("/api/user/profile", headers=auth_headers("00000000-0000-0000-0000-000000000000|nope"))

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthenticated."


def test_profile_checks_api_key_before_token(client: TestClient) -> None:
    _, token = register_user(client)

    response = client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["message"] == "API key is missing."


def test_subscription_routes_require_authentication(client: TestClient) -> None:
    for path in ("/api/subscription", "/api/subscription/currencies", "/api/subscription/plans"):
        response = client.get(path, headers=API_HEADERS)
        assert response.status_code == 401, path

    response = client.post("/api/subscription/start-trial", headers=API_HEADERS)
    assert response.status_code == 401


def test_profile_update_requires_api_key(client: TestClient, services: Services) -> None:
    user, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={"name": "Changed Name"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "API key is missing."
    stored = services.users.find_by_uuid(user["uuid"])
    assert stored is not None and stored.name == "John Doe"


def test_profile_update_requires_bearer_token(client: TestClient, services: Services) -> None:
    user, _ = register_user(client)

    response = client.put("/api/user/profile", json={"name": "Changed Name"}, headers=API_HEADERS)

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthenticated."
    stored = services.users.find_by_uuid(user["uuid"])
    assert stored is not None and stored.name == "John Doe"
