from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.booking_store import clear_booking_store_cache
from app.services.room_store import clear_room_store_cache
from app.services.user_store import clear_user_store_cache


@pytest.fixture(autouse=True)
def reset_stores(monkeypatch: pytest.MonkeyPatch) -> None:
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


def _auth_headers(client: TestClient, *, email: str = "admin", password: str = "admin") -> dict[str, str]:
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _register(client: TestClient, email: str) -> dict[str, str]:
    response = client.post(
        "/api/auth/register",
        json={"full_name": "Room User", "email": email, "password": "password123"},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _create_room(client: TestClient, headers: dict[str, str], **overrides: object) -> dict:
    payload = {
        "name": "Orion",
        "capacity": 6,
        "location": "HQ",
        "floor": 2,
        "equipment": ["projector", "whiteboard"],
        "features": ["video_conference"],
    }
    payload.update(overrides)
    response = client.post("/api/rooms", json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


def _book(client: TestClient, headers: dict[str, str], room_id: str, start: str, end: str) -> str:
    response = client.post(
        "/api/bookings",
        json={
            "room_id": room_id,
            "title": "Planning",
            "start_date": "2030-06-10",
            "start_time": start,
            "end_date": "2030-06-10",
            "end_time": end,
        },
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_admin_creates_room_and_lists_it(client: TestClient) -> None:
    headers = _auth_headers(client)
    created = _create_room(client, headers)

    assert created["name"] == "Orion"
    assert created["equipment"] == ["projector", "whiteboard"]

    list_response = client.get("/api/rooms")
    assert list_response.status_code == 200
    assert [room["id"] for room in list_response.json()["items"]] == [created["id"]]

    detail_response = client.get(f"/api/rooms/{created['id']}")
    assert detail_response.status_code == 200
    assert detail_response.json()["capacity"] == 6


def test_only_admins_can_create_rooms(client: TestClient) -> None:
    headers = _register(client, "member@example.com")

    response = client.post("/api/rooms", json={"name": "Nope", "capacity": 4}, headers=headers)

    assert response.status_code == 403
    assert client.post("/api/rooms", json={"name": "Nope", "capacity": 4}).status_code == 401


def test_unknown_room_returns_404(client: TestClient) -> None:
    assert client.get("/api/rooms/does-not-exist").status_code == 404


def test_room_filters(client: TestClient) -> None:
    headers = _auth_headers(client)
    orion = _create_room(client, headers)
    _create_room(
        client,
        headers,
        name="Lyra",
        capacity=12,
        location="Annex",
        floor=1,
        equipment=["tv"],
        features=[],
    )

    by_search = client.get("/api/rooms", params={"search": "ori"}).json()["items"]
    by_capacity = client.get("/api/rooms", params={"capacity_min": 10}).json()["items"]
    by_equipment = client.get(
        "/api/rooms",
        params=[("equipment", "projector"), ("equipment", "whiteboard")],
    ).json()["items"]
    by_location = client.get("/api/rooms", params={"location": "Annex"}).json()["items"]

    assert [room["id"] for room in by_search] == [orion["id"]]
    assert [room["name"] for room in by_capacity] == ["Lyra"]
    assert [room["name"] for room in by_equipment] == ["Orion"]
    assert [room["name"] for room in by_location] == ["Lyra"]


def test_room_facets(client: TestClient) -> None:
    empty_range = client.get("/api/rooms/capacity-range")
    assert empty_range.json() == {"min": 1, "max": 20}

    headers = _auth_headers(client)
    _create_room(client, headers)
    _create_room(client, headers, name="Lyra", capacity=12, location="Annex", equipment=["tv"], features=[])

    assert client.get("/api/rooms/locations").json()["items"] == ["Annex", "HQ"]
    assert client.get("/api/rooms/equipment").json()["items"] == ["projector", "tv", "whiteboard"]
    assert client.get("/api/rooms/features").json()["items"] == ["video_conference"]
    assert client.get("/api/rooms/capacity-range").json() == {"min": 6, "max": 12}


def test_room_availability_and_utilization(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)
    booking_id = _book(client, headers, room["id"], "09:00", "10:00")

    availability = client.get(f"/api/rooms/{room['id']}/availability", params={"date": "2030-06-10"})
    assert availability.status_code == 200
    slots = {slot["hour_slot"]: slot for slot in availability.json()["slots"]}
    assert sorted(slots) == list(range(8, 18))
    assert slots[9]["is_available"] is False
    assert slots[9]["booking_id"] == booking_id
    assert slots[8]["is_available"] is True
    assert slots[10]["is_available"] is True

    utilization = client.get(
        f"/api/rooms/{room['id']}/utilization",
        params={"start_date": "2030-06-10", "end_date": "2030-06-10"},
    )
    assert utilization.status_code == 200
    assert utilization.json() == {
        "total_hours": 10.0,
        "booked_hours": 1.0,
        "utilization_percentage": 10.0,
    }


def test_availability_includes_bookings_started_on_earlier_days(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)
    response = client.post(
        "/api/bookings",
        json={
            "room_id": room["id"],
            "title": "Offsite",
            "start_date": "2030-06-08",
            "start_time": "09:00",
            "end_date": "2030-06-10",
            "end_time": "09:30",
        },
        headers=headers,
    )
    assert response.status_code == 201

    availability = client.get(f"/api/rooms/{room['id']}/availability", params={"date": "2030-06-10"})

    slots = {slot["hour_slot"]: slot for slot in availability.json()["slots"]}
    assert slots[8]["is_available"] is False
    assert slots[9]["is_available"] is False
    assert slots[9]["booking_id"] == response.json()["id"]
    assert slots[10]["is_available"] is True


def test_room_check_and_next_available(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)
    _book(client, headers, room["id"], "09:00", "10:00")

    busy = client.get(
        f"/api/rooms/{room['id']}/check",
        params={"start_time": "2030-06-10T09:30:00Z", "end_time": "2030-06-10T10:30:00Z"},
    )
    free = client.get(
        f"/api/rooms/{room['id']}/check",
        params={"start_time": "2030-06-10T10:00:00Z", "end_time": "2030-06-10T11:00:00Z"},
    )
    assert busy.json() == {"room_id": room["id"], "is_available": False}
    assert free.json()["is_available"] is True

    next_slot = client.get(
        f"/api/rooms/{room['id']}/next-available",
        params={"from_time": "2030-06-10T09:10:00Z", "duration_minutes": 60},
    )
    assert next_slot.status_code == 200
    slot = next_slot.json()["slot"]
    assert datetime.fromisoformat(slot["next_available_time"]) == datetime.fromisoformat("2030-06-10T10:00:00+00:00")
    assert datetime.fromisoformat(slot["next_available_end"]) == datetime.fromisoformat("2030-06-10T11:00:00+00:00")


def test_next_available_skips_to_next_business_day(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)

    response = client.get(
        f"/api/rooms/{room['id']}/next-available",
        params={"from_time": "2030-06-10T17:45:00Z", "duration_minutes": 30},
    )

    slot = response.json()["slot"]
    assert datetime.fromisoformat(slot["next_available_time"]) == datetime.fromisoformat("2030-06-11T08:00:00+00:00")


def test_room_check_rejects_inverted_range(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)

    response = client.get(
        f"/api/rooms/{room['id']}/check",
        params={"start_time": "2030-06-10T11:00:00Z", "end_time": "2030-06-10T10:00:00Z"},
    )

    assert response.status_code == 422


def test_room_bookings_listing(client: TestClient) -> None:
    headers = _auth_headers(client)
    room = _create_room(client, headers)
    _book(client, headers, room["id"], "13:00", "14:00")
    _book(client, headers, room["id"], "09:00", "10:00")

    response = client.get(
        f"/api/rooms/{room['id']}/bookings",
        params={"start_date": "2030-06-10", "end_date": "2030-06-10", "include_user_info": True},
    )

    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["title"] for item in items] == ["Planning", "Planning"]
    assert items[0]["start_time"] < items[1]["start_time"]
    assert items[0]["room"]["name"] == "Orion"
    assert items[0]["profile"]["email"] == "admin"


def test_list_rooms_with_availability(client: TestClient) -> None:
    headers = _auth_headers(client)
    _create_room(client, headers)

    response = client.get("/api/rooms", params={"include_availability": True})

    assert response.status_code == 200
    assert response.json()["items"][0]["is_currently_available"] is True
