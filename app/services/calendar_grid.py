"""Weekly calendar grid for meeting rooms.

Bookings are laid out on a week x room x day x 30-minute-slot grid covering
business hours (08:00-18:00). Everything in this module is a pure function of
its arguments; callers inject "now" and the calendar timezone explicitly.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.schemas.booking import Booking, BookingStatus
from app.schemas.calendar import (
    CalendarBooking,
    CalendarDayGrid,
    CalendarRoom,
    CalendarTimeSlot,
    CalendarViewOptions,
    CalendarWeekGrid,
)
from app.schemas.room import Room

logger = logging.getLogger(__name__)

BUSINESS_START_HOUR = 8
BUSINESS_END_HOUR = 18
SLOT_MINUTES = 30
DAYS_PER_WEEK = 7

BOOKING_COLORS: tuple[str, ...] = (
    "#3B82F6",  # blue
    "#10B981",  # emerald
    "#F59E0B",  # amber
    "#EF4444",  # red
    "#8B5CF6",  # violet
    "#F97316",  # orange
    "#06B6D4",  # cyan
    "#84CC16",  # lime
)

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

WeekDirection = Literal["prev", "next"]


@dataclass(frozen=True)
class TimeSlot:
    hour: int
    minute: int
    label: str

    @property
    def minutes_of_day(self) -> int:
        return self.hour * 60 + self.minute


@dataclass(frozen=True)
class CalendarDay:
    date: date
    day_name: str
    day_number: int
    is_today: bool
    is_weekend: bool


@dataclass(frozen=True)
class CalendarWeek:
    week_start: datetime
    week_end: datetime
    days: tuple[CalendarDay, ...]


def resolve_timezone(name: str | None) -> tzinfo:
    cleaned = (name or "").strip()
    if not cleaned or cleaned.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown calendar timezone=%s, falling back to UTC", cleaned)
        return UTC


def to_calendar_time(value: datetime, tz: tzinfo = UTC) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def format_time(hour: int, minute: int) -> str:
    period = "PM" if hour >= 12 else "AM"
    if hour > 12:
        display_hour = hour - 12
    elif hour == 0:
        display_hour = 12
    else:
        display_hour = hour
    return f"{display_hour}:{minute:02d} {period}"


def generate_time_slots() -> list[TimeSlot]:
    return [
        TimeSlot(hour=hour, minute=minute, label=format_time(hour, minute))
        for hour in range(BUSINESS_START_HOUR, BUSINESS_END_HOUR)
        for minute in range(0, 60, SLOT_MINUTES)
    ]


def get_start_of_week(reference: date | datetime, tz: tzinfo = UTC) -> datetime:
    if isinstance(reference, datetime):
        reference_day = to_calendar_time(reference, tz).date()
    else:
        reference_day = reference
    # date.weekday() is 0 for Monday and 6 for Sunday.
    monday = reference_day - timedelta(days=reference_day.weekday())
    return datetime.combine(monday, time.min, tzinfo=tz)


def resolve_week(
    reference: date | datetime,
    *,
    today: date,
    tz: tzinfo = UTC,
) -> CalendarWeek:
    week_start = get_start_of_week(reference, tz)
    days: list[CalendarDay] = []
    for offset in range(DAYS_PER_WEEK):
        day = week_start.date() + timedelta(days=offset)
        days.append(
            CalendarDay(
                date=day,
                day_name=_DAY_NAMES[day.weekday()],
                day_number=day.day,
                is_today=day == today,
                is_weekend=day.weekday() >= 5,
            ),
        )
    week_end = datetime.combine(week_start.date() + timedelta(days=DAYS_PER_WEEK - 1), time.min, tzinfo=tz)
    return CalendarWeek(week_start=week_start, week_end=week_end, days=tuple(days))


def navigate_week(reference: date | datetime, direction: str) -> date | datetime:
    if direction == "next":
        return reference + timedelta(days=DAYS_PER_WEEK)
    if direction == "prev":
        return reference - timedelta(days=DAYS_PER_WEEK)
    raise ValueError(f"Unsupported week direction: {direction!r}")


def format_week_range(week: CalendarWeek) -> str:
    start, end = week.week_start, week.week_end
    start_month = _MONTH_NAMES[start.month - 1]
    end_month = _MONTH_NAMES[end.month - 1]
    if start_month == end_month:
        return f"{start_month} {start.day} - {end.day}, {end.year}"
    return f"{start_month} {start.day} - {end_month} {end.day}, {end.year}"


def create_slot_datetime(slot_date: date, slot: TimeSlot, tz: tzinfo = UTC) -> datetime:
    return datetime.combine(slot_date, time(slot.hour, slot.minute), tzinfo=tz)


def is_booking_in_slot(
    booking_start: datetime,
    booking_end: datetime,
    slot_date: date,
    slot: TimeSlot,
    tz: tzinfo = UTC,
) -> bool:
    """Half-open overlap: a booking that only touches the slot edge is not in it."""
    slot_start = create_slot_datetime(slot_date, slot, tz)
    slot_end = slot_start + timedelta(minutes=SLOT_MINUTES)
    start = to_calendar_time(booking_start, tz)
    end = to_calendar_time(booking_end, tz)
    return start < slot_end and end > slot_start


def get_booking_duration(start_time: datetime, end_time: datetime) -> int:
    elapsed_seconds = (end_time - start_time).total_seconds()
    return _round_half_up(elapsed_seconds / 60)


def get_booking_height(start_time: datetime, end_time: datetime) -> int:
    duration = get_booking_duration(start_time, end_time)
    return max(1, _round_half_up(duration / SLOT_MINUTES))


def get_booking_position(
    start_time: datetime,
    time_slots: Sequence[TimeSlot],
    tz: tzinfo = UTC,
) -> int:
    """Index of the slot containing the booking start.

    Unaligned starts are floored to their slot, starts before business hours
    clamp to the first slot, and starts after the last slot return -1.
    """
    if not time_slots:
        return -1
    local_start = to_calendar_time(start_time, tz)
    start_minutes = local_start.hour * 60 + local_start.minute
    if start_minutes < time_slots[0].minutes_of_day:
        return 0
    floored_minutes = start_minutes - start_minutes % SLOT_MINUTES
    for index, slot in enumerate(time_slots):
        if slot.minutes_of_day == floored_minutes:
            return index
    return -1


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, remaining_minutes = divmod(minutes, 60)
    if remaining_minutes == 0:
        return f"{hours}h"
    return f"{hours}h {remaining_minutes}m"


def booking_color(user_id: str) -> str:
    value = 0
    encoded = user_id.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        code_unit = int.from_bytes(encoded[index : index + 2], "little")
        value = _to_int32(value * 31 + code_unit)
    return BOOKING_COLORS[abs(value) % len(BOOKING_COLORS)]


def assemble_calendar_week(
    rooms: Sequence[Room],
    bookings: Sequence[Booking],
    reference_date: date | datetime,
    options: CalendarViewOptions | None = None,
    *,
    now: datetime | None = None,
    tz: tzinfo = UTC,
) -> CalendarWeekGrid | None:
    if not rooms:
        return None

    view_options = options or CalendarViewOptions()
    today = to_calendar_time(now or datetime.now(tz), tz).date()
    week = resolve_week(reference_date, today=today, tz=tz)
    time_slots = generate_time_slots()

    bookings_by_room: dict[str, list[Booking]] = {}
    for booking in bookings:
        if booking.status != BookingStatus.CONFIRMED:
            continue
        bookings_by_room.setdefault(booking.room_id, []).append(booking)

    annotated: dict[str, CalendarBooking] = {}

    def _annotate(booking: Booking) -> CalendarBooking:
        calendar_booking = annotated.get(booking.id)
        if calendar_booking is None:
            calendar_booking = CalendarBooking(
                **booking.model_dump(),
                grid_position=get_booking_position(booking.start_time, time_slots, tz),
                grid_height=get_booking_height(booking.start_time, booking.end_time),
                color=booking_color(booking.user_id),
            )
            annotated[booking.id] = calendar_booking
        return calendar_booking

    calendar_rooms: list[CalendarRoom] = []
    for room in rooms:
        room_bookings = bookings_by_room.get(room.id, [])
        days: list[CalendarDayGrid] = []
        for day in week.days:
            if day.is_weekend and not view_options.show_weekends:
                continue

            day_slots: list[CalendarTimeSlot] = []
            for slot in time_slots:
                slot_bookings = [
                    _annotate(booking)
                    for booking in room_bookings
                    if is_booking_in_slot(booking.start_time, booking.end_time, day.date, slot, tz)
                ]
                day_slots.append(
                    CalendarTimeSlot(
                        hour=slot.hour,
                        minute=slot.minute,
                        label=slot.label,
                        date_time=create_slot_datetime(day.date, slot, tz),
                        is_available=not slot_bookings,
                        bookings=slot_bookings,
                    ),
                )

            days.append(
                CalendarDayGrid(
                    date=day.date,
                    day_name=day.day_name,
                    day_number=day.day_number,
                    is_today=day.is_today,
                    is_weekend=day.is_weekend,
                    time_slots=day_slots,
                ),
            )
        calendar_rooms.append(CalendarRoom(room=room, days=days))

    return CalendarWeekGrid(
        week_start=week.week_start,
        week_end=week.week_end,
        rooms=calendar_rooms,
    )


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value
