from fastapi.testclient import TestClient

from conftest import PASSWORD, auth_headers, register_user
from portal.factory import Services


def test_profile_information_can_be_retrieved(client: TestClient) -> None:
    user, token = register_user(client)

    response = client.get("/api/user/profile", headers=auth_headers(token))

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["data"]["uuid"] == user["uuid"]
    assert payload["data"]["email"] == "john@example.com"


def test_profile_information_can_be_updated(client: TestClient) -> None:
    _, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={"name": "Test Name", "email": "test@example.com"},
        headers=auth_headers(token),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "Profile updated successfully"
    assert payload["data"]["name"] == "Test Name"
    assert payload["data"]["email"] == "test@example.com"


def test_user_can_keep_their_own_email(client: TestClient) -> None:
    _, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={"name": "John Updated", "email": "john@example.com"},
        headers=auth_headers(token),
    )

    assert response.status_code == 200
    assert response.json()["data"]["name"] == "John Updated"


def test_email_must_be_unique(client: TestClient) -> None:
    register_user(client, name="Other", email="taken@example.com")
    _, token = register_user(client)

    response = client.put("/api/user/profile", json={"email": "taken@example.com"}, headers=auth_headers(token))

    assert response.status_code == 422
    assert response.json()["errors"] == {"email": ["The email has already been taken."]}


def test_password_can_be_updated(client: TestClient, services: Services) -> None:
    user, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={
            "current_password": PASSWORD,
            "password": "new-password",
            "password_confirmation": "new-password",
        },
        headers=auth_headers(token),
    )

    assert response.status_code == 200
    stored = services.users.find_by_uuid(user["uuid"])
    assert stored is not None
    assert services.users.verify_password(stored, "new-password")
    assert not services.users.verify_password(stored, PASSWORD)


def test_current_password_is_required_to_change_password(client: TestClient) -> None:
    _, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={"password": "new-password", "password_confirmation": "new-password"},
        headers=auth_headers(token),
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {
        "current_password": ["The current password field is required when password is present."]
    }


def test_current_password_must_be_correct(client: TestClient, services: Services) -> None:
    user, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={
            "current_password": "wrong-password",
            "password": "new-password",
            "password_confirmation": "new-password",
        },
        headers=auth_headers(token),
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {"current_password": ["The password is incorrect."]}
    stored = services.users.find_by_uuid(user["uuid"])
    assert stored is not None
    assert services.users.verify_password(stored, PASSWORD)


def test_password_confirmation_must_match(client: TestClient) -> None:
    _, token = register_user(client)

    response = client.put(
        "/api/user/profile",
        json={
            "current_password": PASSWORD,
            "password": "new-password",
            "password_confirmation": "different-password",
        },
        headers=auth_headers(token),
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {"password": ["The password field confirmation does not match."]}


def test_profile_update_is_logged(client: TestClient, services: Services) -> None:
    user, token = register_user(client)

    client.put("/api/user/profile", json={"name": "Logged Name"}, headers=auth_headers(token))

    stored = services.users.find_by_uuid(user["uuid"])
    assert stored is not None
    entries = services.activity.list_for_user(stored)
    assert "updated profile" in [entry.description for entry in entries]
