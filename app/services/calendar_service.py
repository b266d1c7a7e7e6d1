from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.booking import ExtendedBooking
from app.schemas.calendar import (
    CalendarNavigationResponse,
    CalendarViewOptions,
    CalendarViewResponse,
    CalendarWeekResponse,
    TimeSlotResponse,
    TimeSlotsResponse,
)
from app.schemas.room import Room
from app.services.booking_events import BookingEventHub
from app.services.booking_service import booking_from_record
from app.services.booking_store import BookingStore, BookingStoreError, create_booking_store
from app.services.calendar_grid import (
    assemble_calendar_week,
    format_week_range,
    generate_time_slots,
    get_start_of_week,
    navigate_week,
    resolve_timezone,
    resolve_week,
    to_calendar_time,
)
from app.services.calendar_view import CalendarFetchError, CalendarViewController
from app.services.room_service import room_from_record
from app.services.room_store import RoomStore, RoomStoreError, create_room_store
from app.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)


class CalendarService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        room_store: RoomStore | None = None,
        booking_store: BookingStore | None = None,
        user_store: UserStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.room_store = room_store or create_room_store(self.settings)
        self.booking_store = booking_store or create_booking_store(self.settings)
        self.user_store = user_store or create_user_store(self.settings)
        self.tz = resolve_timezone(self.settings.calendar_timezone)

    def get_time_slots(self) -> TimeSlotsResponse:
        return TimeSlotsResponse(
            items=[
                TimeSlotResponse(hour=slot.hour, minute=slot.minute, label=slot.label)
                for slot in generate_time_slots()
            ],
        )

    def fetch_week_data(self, reference_date: date | datetime) -> tuple[list[Room], list[ExtendedBooking]]:
        """Rooms and the confirmed bookings starting inside the week of ``reference_date``."""
        week_start = get_start_of_week(reference_date, self.tz)
        starts_until = datetime.combine(
            week_start.date() + timedelta(days=6),
            time(23, 59, 59),
            tzinfo=self.tz,
        )

        try:
            room_records = self.room_store.list_rooms()
            booking_records = [
                record
                for room_record in room_records
                for record in self.booking_store.list_room_bookings(
                    str(room_record["_id"]),
                    starts_from=week_start,
                    starts_until=starts_until,
                )
            ]
        except (RoomStoreError, BookingStoreError) as exc:
            raise CalendarFetchError("Failed to fetch calendar data.") from exc

        rooms_by_id = {str(record["_id"]): record for record in room_records}
        profiles = self.user_store.list_users_by_ids(
            [str(record.get("user_id", "")) for record in booking_records],
        )
        bookings = [
            booking_from_record(
                record,
                room=rooms_by_id.get(str(record.get("room_id", ""))),
                profile=profiles.get(str(record.get("user_id", ""))),
            )
            for record in booking_records
        ]
        return [room_from_record(record) for record in room_records], bookings

    def get_week(
        self,
        reference_date: date | datetime,
        *,
        show_weekends: bool | None = None,
        now: datetime | None = None,
    ) -> CalendarWeekResponse:
        try:
            rooms, bookings = self.fetch_week_data(reference_date)
        except CalendarFetchError as exc:
            logger.warning("Calendar fetch failed reference_date=%s", reference_date)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Failed to fetch calendar data.",
            ) from exc

        options = CalendarViewOptions(
            show_weekends=self.settings.calendar_show_weekends if show_weekends is None else show_weekends,
        )
        current_time = now or datetime.now(UTC)
        week = assemble_calendar_week(rooms, bookings, reference_date, options, now=current_time, tz=self.tz)
        return CalendarWeekResponse(
            reference_date=_reference_day(reference_date, self.tz),
            week_label=self._week_label(reference_date, current_time),
            week=week,
        )

    def navigate(
        self,
        reference_date: date,
        direction: str,
        *,
        now: datetime | None = None,
    ) -> CalendarNavigationResponse:
        try:
            target = navigate_week(reference_date, direction)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="direction must be 'prev' or 'next'.",
            ) from exc

        current_time = now or datetime.now(UTC)
        week = resolve_week(target, today=to_calendar_time(current_time, self.tz).date(), tz=self.tz)
        return CalendarNavigationResponse(
            reference_date=target,
            week_start=week.week_start.date(),
            week_end=week.week_end.date(),
            week_label=format_week_range(week),
        )

    def view_controller(
        self,
        reference_date: date,
        *,
        event_hub: BookingEventHub | None = None,
        show_weekends: bool | None = None,
    ) -> CalendarViewController:
        """Loaded week view that refetches whenever ``event_hub`` reports a booking change."""
        controller = CalendarViewController(
            self.fetch_week_data,
            reference_date=reference_date,
            show_weekends=self.settings.calendar_show_weekends if show_weekends is None else show_weekends,
            tz=self.tz,
        )
        controller.refresh()
        if event_hub is not None:
            controller.attach_realtime(event_hub)
        return controller

    def navigate_view(self, controller: CalendarViewController, direction: str) -> None:
        try:
            controller.navigate_to_week(direction)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="direction must be 'prev' or 'next'.",
            ) from exc

    def describe_view(
        self,
        controller: CalendarViewController,
        *,
        now: datetime | None = None,
    ) -> CalendarViewResponse:
        state = controller.state
        return CalendarViewResponse(
            current_week=state.current_week,
            view_mode=state.view_mode,
            show_weekends=state.show_weekends,
            selected_room=state.selected_room,
            generation=controller.generation,
            loading=controller.loading,
            error=controller.error,
            week_label=self._week_label(state.current_week, now or datetime.now(UTC)),
            week=controller.calendar_week,
        )

    def _week_label(self, reference_date: date | datetime, now: datetime) -> str:
        week = resolve_week(reference_date, today=to_calendar_time(now, self.tz).date(), tz=self.tz)
        return format_week_range(week)


def _reference_day(reference_date: date | datetime, tz: tzinfo) -> date:
    if isinstance(reference_date, datetime):
        return to_calendar_time(reference_date, tz).date()
    return reference_date
