from datetime import UTC, date, datetime

from app.schemas.booking import Booking
from app.schemas.room import Room
from app.services.booking_events import BookingEvent, BookingEventHub, BookingEventType
from app.services.calendar_view import CalendarFetchError, CalendarViewController, CalendarViewRegistry

NOW = datetime(2024, 6, 12, 12, 0, tzinfo=UTC)
ROOM = Room(id="room-a", name="Room A", capacity=6, created_at=NOW)


def _booking(booking_id: str, day: date) -> Booking:
    return Booking(
        id=booking_id,
        room_id="room-a",
        user_id="alice",
        title="Standup",
        start_time=datetime(day.year, day.month, day.day, 9, 0, tzinfo=UTC),
        end_time=datetime(day.year, day.month, day.day, 10, 0, tzinfo=UTC),
        duration_minutes=60,
        created_at=NOW,
    )


class RecordingFetcher:
    def __init__(self) -> None:
        self.requested: list[date] = []
        self.bookings: list[Booking] = []
        self.error: CalendarFetchError | None = None

    def __call__(self, reference_date: date) -> tuple[list[Room], list[Booking]]:
        self.requested.append(reference_date)
        if self.error is not None:
            raise self.error
        return [ROOM], list(self.bookings)


def _controller(fetcher: RecordingFetcher) -> CalendarViewController:
    return CalendarViewController(fetcher, reference_date=date(2024, 6, 12), clock=lambda: NOW)


def test_refresh_populates_the_grid() -> None:
    fetcher = RecordingFetcher()
    fetcher.bookings = [_booking("b1", date(2024, 6, 10))]
    controller = _controller(fetcher)

    assert controller.calendar_week is None
    assert controller.refresh() is True

    week = controller.calendar_week
    assert week is not None
    assert controller.loading is False
    nine = week.rooms[0].days[0].time_slots[2]
    assert nine.is_available is False
    assert nine.bookings[0].id == "b1"


def test_navigation_moves_week_and_refetches() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)

    controller.navigate_to_week("next")
    controller.navigate_to_week("next")
    controller.navigate_to_week("prev")

    assert controller.state.current_week == date(2024, 6, 19)
    assert fetcher.requested == [date(2024, 6, 19), date(2024, 6, 26), date(2024, 6, 19)]
    assert controller.generation == 3
    assert controller.calendar_week.week_start == datetime(2024, 6, 17, tzinfo=UTC)


def test_stale_fetch_results_are_discarded() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)

    stale_generation, stale_reference = controller.begin_fetch()
    assert stale_reference == date(2024, 6, 12)

    fetcher.bookings = [_booking("fresh", date(2024, 6, 19))]
    controller.navigate_to_week("next")

    applied = controller.complete_fetch(stale_generation, [ROOM], [_booking("stale", date(2024, 6, 10))])

    assert applied is False
    week = controller.calendar_week
    assert week is not None
    booking_ids = {
        booking.id
        for day in week.rooms[0].days
        for slot in day.time_slots
        for booking in slot.bookings
    }
    assert booking_ids == {"fresh"}


def test_stale_failure_does_not_override_newer_state() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)

    stale_generation, _ = controller.begin_fetch()
    controller.refresh()

    assert controller.fail_fetch(stale_generation, "boom") is False
    assert controller.error is None


def test_fetch_failure_sets_error() -> None:
    fetcher = RecordingFetcher()
    fetcher.error = CalendarFetchError("Failed to fetch calendar data.")
    controller = _controller(fetcher)

    assert controller.refresh() is False
    assert controller.error == "Failed to fetch calendar data."
    assert controller.loading is False
    assert controller.calendar_week is None


def test_failed_navigation_hides_previous_week_data() -> None:
    fetcher = RecordingFetcher()
    fetcher.bookings = [_booking("b1", date(2024, 6, 10))]
    controller = _controller(fetcher)
    controller.refresh()

    fetcher.error = CalendarFetchError("Failed to fetch calendar data.")
    assert controller.navigate_to_week("next") is False

    assert controller.state.current_week == date(2024, 6, 19)
    assert controller.error == "Failed to fetch calendar data."
    assert controller.calendar_week is None

    fetcher.error = None
    controller.refresh()
    week = controller.calendar_week
    assert week is not None
    assert week.week_start == datetime(2024, 6, 17, tzinfo=UTC)
    assert all(not slot.bookings for day in week.rooms[0].days for slot in day.time_slots)


def test_view_toggles() -> None:
    controller = _controller(RecordingFetcher())
    controller.refresh()

    controller.toggle_room("room-a")
    assert controller.state.selected_room == "room-a"
    controller.toggle_room("room-a")
    assert controller.state.selected_room is None

    controller.set_show_weekends(True)
    assert len(controller.calendar_week.rooms[0].days) == 7


def test_realtime_events_trigger_refresh_until_unsubscribed() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)
    hub = BookingEventHub()
    subscription = controller.attach_realtime(hub)
    event = BookingEvent(
        type=BookingEventType.INSERT,
        new={"_id": "b1", "user_id": "alice", "title": "Standup"},
    )

    hub.publish(event)
    hub.publish(event)
    assert len(fetcher.requested) == 2

    subscription.unsubscribe()
    subscription.unsubscribe()
    hub.publish(event)

    assert len(fetcher.requested) == 2
    assert hub.subscriber_count == 0


def test_realtime_subscription_filters_by_user() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)
    hub = BookingEventHub()
    controller.attach_realtime(hub, user_id="alice")

    hub.publish(BookingEvent(type=BookingEventType.UPDATE, new={"_id": "b1", "user_id": "bob"}))
    hub.publish(BookingEvent(type=BookingEventType.DELETE, old={"_id": "b2", "user_id": "alice"}))

    assert len(fetcher.requested) == 1


def test_close_releases_realtime_subscription() -> None:
    fetcher = RecordingFetcher()
    controller = _controller(fetcher)
    hub = BookingEventHub()
    first = controller.attach_realtime(hub)
    controller.attach_realtime(hub)

    assert first.active is False
    assert hub.subscriber_count == 1

    controller.close()
    controller.close()
    hub.publish(BookingEvent(type=BookingEventType.INSERT, new={"_id": "b1", "user_id": "alice"}))

    assert hub.subscriber_count == 0
    assert fetcher.requested == []


def test_registry_keeps_one_view_per_user_and_closes_them() -> None:
    hub = BookingEventHub()
    registry = CalendarViewRegistry()
    created: list[CalendarViewController] = []

    def factory() -> CalendarViewController:
        controller = _controller(RecordingFetcher())
        controller.attach_realtime(hub)
        created.append(controller)
        return controller

    alice = registry.get_or_create("alice", factory)
    assert registry.get_or_create("alice", factory) is alice
    bob = registry.get_or_create("bob", factory)

    assert bob is not alice
    assert len(created) == 2
    assert "alice" in registry
    assert hub.subscriber_count == 2

    registry.close()

    assert hub.subscriber_count == 0
    assert "alice" not in registry
