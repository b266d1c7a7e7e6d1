from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, tzinfo

from app.schemas.booking import Booking
from app.schemas.calendar import CalendarViewOptions, CalendarWeekGrid
from app.schemas.room import Room
from app.services.booking_events import BookingEvent, BookingEventHub, Subscription
from app.services.calendar_grid import assemble_calendar_week, get_start_of_week, navigate_week

logger = logging.getLogger(__name__)

WeekDataFetcher = Callable[[date], tuple[Sequence[Room], Sequence[Booking]]]


class CalendarFetchError(RuntimeError):
    pass


@dataclass(frozen=True)
class CalendarViewState:
    current_week: date
    view_mode: str = "week"
    show_weekends: bool = False
    selected_room: str | None = None


class CalendarViewController:
    """Week view state for one calendar consumer.

    Every navigation or refresh takes a new fetch generation; results that
    arrive for an older generation are dropped, so the grid always reflects the
    most recently requested week.
    """

    def __init__(
        self,
        fetch_week: WeekDataFetcher,
        *,
        reference_date: date,
        show_weekends: bool = False,
        tz: tzinfo = UTC,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetch_week = fetch_week
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._state = CalendarViewState(current_week=reference_date, show_weekends=show_weekends)
        self._generation = 0
        self._requested_week: date | None = None
        self._loaded_week: date | None = None
        self._rooms: list[Room] = []
        self._bookings: list[Booking] = []
        self._subscription: Subscription | None = None
        self.loading = False
        self.error: str | None = None

    @property
    def state(self) -> CalendarViewState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def calendar_week(self) -> CalendarWeekGrid | None:
        """Grid for the current week, or None while its data is missing or failed."""
        with self._lock:
            if self.error is not None or self._loaded_week is None:
                return None
            state = self._state
            if get_start_of_week(self._loaded_week, self._tz) != get_start_of_week(state.current_week, self._tz):
                return None
            rooms = list(self._rooms)
            bookings = list(self._bookings)
        return assemble_calendar_week(
            rooms,
            bookings,
            state.current_week,
            CalendarViewOptions(show_weekends=state.show_weekends),
            now=self._clock(),
            tz=self._tz,
        )

    def navigate_to_week(self, direction: str) -> bool:
        with self._lock:
            target = navigate_week(self._state.current_week, direction)
            self._state = replace(self._state, current_week=target)
        return self.refresh()

    def set_current_week(self, reference_date: date) -> bool:
        with self._lock:
            self._state = replace(self._state, current_week=reference_date)
        return self.refresh()

    def toggle_room(self, room_id: str) -> None:
        with self._lock:
            selected = None if self._state.selected_room == room_id else room_id
            self._state = replace(self._state, selected_room=selected)

    def set_show_weekends(self, show_weekends: bool) -> None:
        with self._lock:
            self._state = replace(self._state, show_weekends=show_weekends)

    def begin_fetch(self) -> tuple[int, date]:
        with self._lock:
            self._generation += 1
            self._requested_week = self._state.current_week
            self.loading = True
            self.error = None
            return self._generation, self._state.current_week

    def complete_fetch(
        self,
        generation: int,
        rooms: Sequence[Room],
        bookings: Sequence[Booking],
    ) -> bool:
        with self._lock:
            if generation != self._generation:
                logger.info(
                    "Discarding stale calendar fetch generation=%s latest=%s",
                    generation,
                    self._generation,
                )
                return False
            self._rooms = list(rooms)
            self._bookings = list(bookings)
            self._loaded_week = self._requested_week
            self.loading = False
            return True

    def fail_fetch(self, generation: int, message: str) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self.error = message
            self.loading = False
            return True

    def refresh(self) -> bool:
        generation, reference_date = self.begin_fetch()
        try:
            rooms, bookings = self._fetch_week(reference_date)
        except CalendarFetchError as exc:
            logger.warning("Calendar refresh failed generation=%s reference_date=%s", generation, reference_date)
            self.fail_fetch(generation, str(exc) or "Failed to fetch calendar data")
            return False
        return self.complete_fetch(generation, rooms, bookings)

    def attach_realtime(self, hub: BookingEventHub, *, user_id: str | None = None) -> Subscription:
        def _on_booking_change(event: BookingEvent) -> None:
            logger.debug("Calendar invalidated by booking event type=%s", event.type.value)
            self.refresh()

        subscription = hub.subscribe(_on_booking_change, user_id=user_id)
        with self._lock:
            previous, self._subscription = self._subscription, subscription
        if previous is not None:
            previous.unsubscribe()
        return subscription

    def close(self) -> None:
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()


class CalendarViewRegistry:
    """One live calendar view per user, released together on shutdown."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._views: dict[str, CalendarViewController] = {}

    def get_or_create(
        self,
        user_id: str,
        factory: Callable[[], CalendarViewController],
    ) -> CalendarViewController:
        with self._lock:
            view = self._views.get(user_id)
        if view is not None:
            return view

        created = factory()
        with self._lock:
            view = self._views.setdefault(user_id, created)
        if view is not created:
            created.close()
        else:
            logger.info("Calendar view opened user_id=%s", user_id)
        return view

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._views

    def close(self) -> None:
        with self._lock:
            views = list(self._views.values())
            self._views.clear()
        for view in views:
            view.close()
        logger.info("Calendar views closed count=%s", len(views))
