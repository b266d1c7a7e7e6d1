from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.room import (
    NextAvailableSlot,
    Room,
    RoomAvailabilityResponse,
    RoomAvailabilitySlot,
    RoomCapacityRange,
    RoomCreateRequest,
    RoomFacetResponse,
    RoomFilters,
    RoomListResponse,
    RoomUtilization,
    RoomWithAvailability,
)
from app.services.booking_store import BookingStore, BookingStoreError, create_booking_store
from app.services.calendar_grid import (
    BUSINESS_END_HOUR,
    BUSINESS_START_HOUR,
    SLOT_MINUTES,
    resolve_timezone,
    to_calendar_time,
)
from app.services.room_store import RoomStore, RoomStoreError, create_room_store

logger = logging.getLogger(__name__)

_DEFAULT_CAPACITY_RANGE = RoomCapacityRange(min=1, max=20)


def room_from_record(record: Mapping[str, Any]) -> Room:
    return Room(
        id=str(record.get("_id", "")),
        name=str(record.get("name", "")),
        capacity=int(record.get("capacity", 0)),
        description=record.get("description"),
        location=record.get("location"),
        equipment=list(record.get("equipment") or []),
        features=list(record.get("features") or []),
        image_url=record.get("image_url"),
        floor=record.get("floor"),
        is_active=bool(record.get("is_active", True)),
        created_at=record.get("created_at") or datetime.now(UTC),
    )


class RoomService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        room_store: RoomStore | None = None,
        booking_store: BookingStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.room_store = room_store or create_room_store(self.settings)
        self.booking_store = booking_store or create_booking_store(self.settings)
        self.tz = resolve_timezone(self.settings.calendar_timezone)

    def list_rooms(
        self,
        filters: RoomFilters | None = None,
        *,
        include_availability: bool = False,
        now: datetime | None = None,
    ) -> RoomListResponse:
        rooms = [room_from_record(record) for record in self._list_room_records(filters)]
        if not include_availability:
            return RoomListResponse(items=rooms)

        current_time = now or datetime.now(UTC)
        return RoomListResponse(
            items=[
                RoomWithAvailability(
                    **room.model_dump(),
                    is_currently_available=self.is_currently_available(room.id, now=current_time),
                )
                for room in rooms
            ],
        )

    def get_room(self, room_id: str) -> Room:
        try:
            record = self.room_store.get_room(room_id.strip())
        except RoomStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query room storage.",
            ) from exc
        if not record or not record.get("is_active", True):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Room not found.",
            )
        return room_from_record(record)

    def create_room(self, payload: RoomCreateRequest) -> Room:
        name = payload.name.strip()
        if len(name) < 2:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Room name must contain at least 2 characters.",
            )
        try:
            record = self.room_store.create_room({**payload.model_dump(), "name": name})
        except RoomStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to persist room.",
            ) from exc
        logger.info("Room created room_id=%s name=%s", record.get("_id"), name)
        return room_from_record(record)

    def list_locations(self) -> RoomFacetResponse:
        locations = {
            str(record["location"])
            for record in self._list_room_records()
            if record.get("location")
        }
        return RoomFacetResponse(items=sorted(locations))

    def list_equipment(self) -> RoomFacetResponse:
        equipment = {item for record in self._list_room_records() for item in record.get("equipment") or []}
        return RoomFacetResponse(items=sorted(equipment))

    def list_features(self) -> RoomFacetResponse:
        features = {item for record in self._list_room_records() for item in record.get("features") or []}
        return RoomFacetResponse(items=sorted(features))

    def get_capacity_range(self) -> RoomCapacityRange:
        capacities = [int(record.get("capacity", 0)) for record in self._list_room_records()]
        if not capacities:
            return _DEFAULT_CAPACITY_RANGE
        return RoomCapacityRange(min=min(capacities), max=max(capacities))

    def get_room_availability(self, room_id: str, day: date) -> RoomAvailabilityResponse:
        room = self.get_room(room_id)
        day_start = datetime.combine(day, time.min, tzinfo=self.tz)
        bookings = self._list_bookings(
            room_id=room.id,
            starts_until=day_start + timedelta(days=1),
            ends_after=day_start,
        )

        slots: list[RoomAvailabilitySlot] = []
        for hour in range(BUSINESS_START_HOUR, BUSINESS_END_HOUR):
            hour_start = datetime.combine(day, time(hour), tzinfo=self.tz)
            hour_end = hour_start + timedelta(hours=1)
            blocking = next(
                (
                    booking
                    for booking in bookings
                    if booking["start_time"] < hour_end and booking["end_time"] > hour_start
                ),
                None,
            )
            slots.append(
                RoomAvailabilitySlot(
                    hour_slot=hour,
                    is_available=blocking is None,
                    booking_id=str(blocking["_id"]) if blocking else None,
                    booking_title=blocking.get("title") if blocking else None,
                ),
            )
        return RoomAvailabilityResponse(room_id=room.id, date=day.isoformat(), slots=slots)

    def get_room_utilization(self, room_id: str, start_date: date, end_date: date) -> RoomUtilization:
        if end_date < start_date:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="end_date must not be before start_date.",
            )
        room = self.get_room(room_id)
        bookings = self._list_bookings(
            room_id=room.id,
            starts_from=datetime.combine(start_date, time.min, tzinfo=self.tz),
            starts_until=datetime.combine(end_date, time.max, tzinfo=self.tz),
        )

        day_count = (end_date - start_date).days + 1
        total_hours = float(day_count * (BUSINESS_END_HOUR - BUSINESS_START_HOUR))
        booked_hours = round(sum(int(booking.get("duration_minutes", 0)) for booking in bookings) / 60, 2)
        return RoomUtilization(
            total_hours=total_hours,
            booked_hours=booked_hours,
            utilization_percentage=round(booked_hours / total_hours * 100, 2),
        )

    def check_available_at(self, room_id: str, start_time: datetime, end_time: datetime) -> bool:
        start = to_calendar_time(start_time, self.tz)
        end = to_calendar_time(end_time, self.tz)
        if end <= start:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="End time must be after start time",
            )
        try:
            return not self.booking_store.has_conflict(room_id, start, end)
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to check room availability.",
            ) from exc

    def is_currently_available(self, room_id: str, *, now: datetime | None = None) -> bool:
        current_time = to_calendar_time(now or datetime.now(UTC), self.tz)
        next_hour = current_time.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return self.check_available_at(room_id, current_time, next_hour)

    def get_next_available_slot(
        self,
        room_id: str,
        from_time: datetime,
        duration_minutes: int = 60,
    ) -> NextAvailableSlot | None:
        if duration_minutes <= 0:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="duration_minutes must be positive.",
            )
        room = self.get_room(room_id)
        duration = timedelta(minutes=duration_minutes)
        cursor = _ceil_to_slot(to_calendar_time(from_time, self.tz))
        search_limit = cursor + timedelta(days=self.settings.next_slot_search_days)

        while cursor < search_limit:
            day_open = datetime.combine(cursor.date(), time(BUSINESS_START_HOUR), tzinfo=self.tz)
            day_close = datetime.combine(cursor.date(), time(BUSINESS_END_HOUR), tzinfo=self.tz)
            if cursor < day_open:
                cursor = day_open
            candidate_end = cursor + duration
            if candidate_end > day_close:
                cursor = day_open + timedelta(days=1)
                continue
            if self.check_available_at(room.id, cursor, candidate_end):
                return NextAvailableSlot(next_available_time=cursor, next_available_end=candidate_end)
            cursor += timedelta(minutes=SLOT_MINUTES)
        return None

    def _list_room_records(self, filters: RoomFilters | None = None) -> list[dict[str, Any]]:
        try:
            return self.room_store.list_rooms(filters)
        except RoomStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query room storage.",
            ) from exc

    def _list_bookings(self, **criteria: Any) -> list[dict[str, Any]]:
        try:
            return self.booking_store.list_bookings(**criteria)
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query booking storage.",
            ) from exc


def _ceil_to_slot(value: datetime) -> datetime:
    floored = value.replace(minute=value.minute - value.minute % SLOT_MINUTES, second=0, microsecond=0)
    if floored == value:
        return floored
    return floored + timedelta(minutes=SLOT_MINUTES)
