import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.booking_store import clear_booking_store_cache
from app.services.room_store import clear_room_store_cache
from app.services.user_store import clear_user_store_cache


@pytest.fixture(autouse=True)
def reset_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_STORE", "memory")

    clear_user_store_cache()
    clear_room_store_cache()
    clear_booking_store_cache()
    get_settings.cache_clear()
    yield
    clear_user_store_cache()
    clear_room_store_cache()
    clear_booking_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_register_login_and_me_flow(client: TestClient) -> None:
    register_response = client.post(
        "/api/auth/register",
        json={
            "full_name": "Test User",
            "email": "test@example.com",
            "password": "password123",
        },
    )

    assert register_response.status_code == 200
    register_payload = register_response.json()
    assert register_payload["access_token"]
    assert register_payload["user"]["email"] == "test@example.com"

    login_response = client.post(
        "/api/auth/login",
        json={"email": "TEST@example.com", "password": "password123"},
    )
    assert login_response.status_code == 200
    token = login_response.json()["access_token"]

    me_response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me_response.status_code == 200
    me_payload = me_response.json()
    assert me_payload["email"] == "test@example.com"
    assert me_payload["role"] == "user"


def test_register_rejects_duplicate_email(client: TestClient) -> None:
    payload = {"full_name": "Test User", "email": "dup@example.com", "password": "password123"}

    assert client.post("/api/auth/register", json=payload).status_code == 200
    duplicate = client.post("/api/auth/register", json=payload)

    assert duplicate.status_code == 409


def test_register_validates_fields(client: TestClient) -> None:
    short_password = client.post(
        "/api/auth/register",
        json={"full_name": "Test User", "email": "short@example.com", "password": "123"},
    )
    bad_email = client.post(
        "/api/auth/register",
        json={"full_name": "Test User", "email": "not-an-email", "password": "password123"},
    )

    assert short_password.status_code == 422
    assert bad_email.status_code == 422


def test_default_admin_can_log_in(client: TestClient) -> None:
    response = client.post("/api/auth/login", json={"email": "admin", "password": "admin"})

    assert response.status_code == 200
    assert response.json()["user"]["role"] == "admin"


def test_login_fails_with_invalid_credentials(client: TestClient) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "admin", "password": "wrong-password"},
    )
    assert response.status_code == 401


def test_me_requires_authentication(client: TestClient) -> None:
    response = client.get("/api/auth/me")
    assert response.status_code == 401


def test_me_rejects_tampered_token(client: TestClient) -> None:
    login_response = client.post("/api/auth/login", json={"email": "admin", "password": "admin"})
    token = login_response.json()["access_token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}x"})

    assert response.status_code == 401


def test_default_admin_password_comes_from_environment(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DEFAULT_ADMIN_PASSWORD", "s3cret-Strong")
    get_settings.cache_clear()

    assert get_settings().default_admin_password == "s3cret-Strong"
    rejected = client.post("/api/auth/login", json={"email": "admin", "password": "admin"})
    accepted = client.post("/api/auth/login", json={"email": "admin", "password": "s3cret-Strong"})

    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json()["user"]["role"] == "admin"
