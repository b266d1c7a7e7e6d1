from collections.abc import Iterator
from datetime import date

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app, create_application
from app.services.booking_store import BookingStoreError, InMemoryBookingStore, clear_booking_store_cache
from app.services.calendar_service import CalendarService
from app.services.room_store import InMemoryRoomStore, RoomStoreError, clear_room_store_cache
from app.services.user_store import InMemoryUserStore, clear_user_store_cache


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


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    response = client.post("/api/auth/login", json={"email": "admin", "password": "admin"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_time_slots_endpoint(client: TestClient) -> None:
    response = client.get("/api/calendar/time-slots")

    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 20
    assert items[0] == {"hour": 8, "minute": 0, "label": "8:00 AM"}
    assert items[-1] == {"hour": 17, "minute": 30, "label": "5:30 PM"}


def test_week_without_rooms_has_no_grid(client: TestClient) -> None:
    response = client.get("/api/calendar/week", params={"reference_date": "2030-06-12"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["week"] is None
    assert payload["reference_date"] == "2030-06-12"
    assert payload["week_label"] == "Jun 10 - 16, 2030"


def test_week_grid_places_bookings(client: TestClient, admin_headers: dict[str, str]) -> None:
    room = client.post(
        "/api/rooms",
        json={"name": "Orion", "capacity": 6},
        headers=admin_headers,
    ).json()
    booking = client.post(
        "/api/bookings",
        json={
            "room_id": room["id"],
            "title": "Design review",
            "start_date": "2030-06-10",
            "start_time": "09:00",
            "end_date": "2030-06-10",
            "end_time": "10:00",
        },
        headers=admin_headers,
    ).json()
    # Starts the following Monday, outside the requested week.
    client.post(
        "/api/bookings",
        json={
            "room_id": room["id"],
            "title": "Next week",
            "start_date": "2030-06-17",
            "start_time": "09:00",
            "end_date": "2030-06-17",
            "end_time": "10:00",
        },
        headers=admin_headers,
    )

    response = client.get("/api/calendar/week", params={"reference_date": "2030-06-12"})

    assert response.status_code == 200
    week = response.json()["week"]
    assert week is not None
    assert week["week_start"].startswith("2030-06-10")
    assert len(week["rooms"]) == 1
    days = week["rooms"][0]["days"]
    assert [day["date"] for day in days] == [
        "2030-06-10",
        "2030-06-11",
        "2030-06-12",
        "2030-06-13",
        "2030-06-14",
    ]
    monday_slots = days[0]["time_slots"]
    nine = monday_slots[2]
    assert (nine["hour"], nine["minute"]) == (9, 0)
    assert nine["is_available"] is False
    assert nine["bookings"][0]["id"] == booking["id"]
    assert nine["bookings"][0]["grid_height"] == 2
    assert nine["bookings"][0]["grid_position"] == 2
    assert nine["bookings"][0]["color"].startswith("#")
    assert nine["bookings"][0]["profile"]["email"] == "admin"
    assert monday_slots[3]["is_available"] is False
    assert monday_slots[4]["is_available"] is True
    booked_titles = {
        entry["title"]
        for day in days
        for slot in day["time_slots"]
        for entry in slot["bookings"]
    }
    assert booked_titles == {"Design review"}


def test_week_can_include_weekends(client: TestClient, admin_headers: dict[str, str]) -> None:
    client.post("/api/rooms", json={"name": "Orion", "capacity": 6}, headers=admin_headers)

    response = client.get(
        "/api/calendar/week",
        params={"reference_date": "2030-06-12", "show_weekends": True},
    )

    days = response.json()["week"]["rooms"][0]["days"]
    assert len(days) == 7
    assert [day["is_weekend"] for day in days][-2:] == [True, True]


def test_navigate_weeks(client: TestClient) -> None:
    forward = client.get(
        "/api/calendar/navigate",
        params={"reference_date": "2024-06-12", "direction": "next"},
    )
    backward = client.get(
        "/api/calendar/navigate",
        params={"reference_date": "2024-06-12", "direction": "prev"},
    )

    assert forward.status_code == 200
    assert forward.json() == {
        "reference_date": "2024-06-19",
        "week_start": "2024-06-17",
        "week_end": "2024-06-23",
        "week_label": "Jun 17 - 23, 2024",
    }
    assert backward.json()["week_label"] == "Jun 3 - 9, 2024"


def test_navigate_rejects_unknown_direction(client: TestClient) -> None:
    response = client.get(
        "/api/calendar/navigate",
        params={"reference_date": "2024-06-12", "direction": "sideways"},
    )

    assert response.status_code == 422


class UnavailableRoomStore(InMemoryRoomStore):
    def list_rooms(self, filters=None):
        raise RoomStoreError("rooms unavailable")


class UnavailableBookingStore(InMemoryBookingStore):
    def list_bookings(self, **criteria):
        raise BookingStoreError("bookings unavailable")


def _fail_assembly(*args, **kwargs):
    raise AssertionError("calendar grid must not be assembled after a failed fetch")


@pytest.mark.parametrize("failing_store", ["rooms", "bookings"])
def test_week_reports_storage_failures_without_assembling(
    monkeypatch: pytest.MonkeyPatch,
    failing_store: str,
) -> None:
    room_store = UnavailableRoomStore() if failing_store == "rooms" else InMemoryRoomStore()
    room_store.create_room({"name": "Orion", "capacity": 6})
    booking_store = UnavailableBookingStore() if failing_store == "bookings" else InMemoryBookingStore()
    monkeypatch.setattr("app.services.calendar_service.assemble_calendar_week", _fail_assembly)
    service = CalendarService(
        get_settings(),
        room_store=room_store,
        booking_store=booking_store,
        user_store=InMemoryUserStore(),
    )

    with pytest.raises(HTTPException) as exc_info:
        service.get_week(date(2030, 6, 12))

    assert exc_info.value.status_code == 503
    assert exc_info.value.detail == "Failed to fetch calendar data."


@pytest.fixture
def view_client() -> Iterator[TestClient]:
    with TestClient(create_application()) as client:
        yield client


def _login(client: TestClient) -> dict[str, str]:
    response = client.post("/api/auth/login", json={"email": "admin", "password": "admin"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_calendar_view_requires_authentication(view_client: TestClient) -> None:
    assert view_client.get("/api/calendar/view").status_code == 401


def test_calendar_view_follows_navigation_and_booking_changes(view_client: TestClient) -> None:
    headers = _login(view_client)
    room = view_client.post("/api/rooms", json={"name": "Orion", "capacity": 6}, headers=headers).json()

    moved = view_client.put("/api/calendar/view/week", params={"reference_date": "2030-06-12"}, headers=headers)
    assert moved.status_code == 200
    payload = moved.json()
    assert payload["current_week"] == "2030-06-12"
    assert payload["view_mode"] == "week"
    assert payload["loading"] is False
    assert payload["error"] is None
    assert payload["week_label"] == "Jun 10 - 16, 2030"
    assert payload["week"]["rooms"][0]["room"]["id"] == room["id"]
    generation = payload["generation"]

    booking = view_client.post(
        "/api/bookings",
        json={
            "room_id": room["id"],
            "title": "Design review",
            "start_date": "2030-06-10",
            "start_time": "09:00",
            "end_date": "2030-06-10",
            "end_time": "10:00",
        },
        headers=headers,
    ).json()

    refreshed = view_client.get("/api/calendar/view", headers=headers).json()
    assert refreshed["generation"] == generation + 1
    nine = refreshed["week"]["rooms"][0]["days"][0]["time_slots"][2]
    assert nine["bookings"][0]["id"] == booking["id"]

    forward = view_client.post("/api/calendar/view/navigate", params={"direction": "next"}, headers=headers).json()
    assert forward["current_week"] == "2030-06-19"
    assert forward["week"]["week_start"].startswith("2030-06-17")

    sideways = view_client.post("/api/calendar/view/navigate", params={"direction": "sideways"}, headers=headers)
    assert sideways.status_code == 422


def test_calendar_view_toggles(view_client: TestClient) -> None:
    headers = _login(view_client)
    view_client.post("/api/rooms", json={"name": "Orion", "capacity": 6}, headers=headers)
    view_client.put("/api/calendar/view/week", params={"reference_date": "2030-06-12"}, headers=headers)

    selected = view_client.post("/api/calendar/view/rooms/room-x/toggle", headers=headers).json()
    cleared = view_client.post("/api/calendar/view/rooms/room-x/toggle", headers=headers).json()
    weekends = view_client.put("/api/calendar/view/weekends", params={"show_weekends": True}, headers=headers).json()
    refreshed = view_client.post("/api/calendar/view/refresh", headers=headers)

    assert selected["selected_room"] == "room-x"
    assert cleared["selected_room"] is None
    assert weekends["show_weekends"] is True
    assert len(weekends["week"]["rooms"][0]["days"]) == 7
    assert refreshed.status_code == 200


def test_shutdown_releases_booking_event_subscribers() -> None:
    application = create_application()
    with TestClient(application) as client:
        headers = _login(client)
        client.get("/api/calendar/view", headers=headers)
        assert application.state.booking_events.subscriber_count == 2

    assert application.state.booking_events.subscriber_count == 0
