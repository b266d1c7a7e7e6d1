from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Mapping
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.schemas.booking import (
    BookingCreateRequest,
    BookingCreatedResponse,
    BookingListResponse,
    BookingProfileSummary,
    BookingRoomSummary,
    BookingStatus,
    BookingUpdateRequest,
    ExtendedBooking,
    QuickBookingRequest,
    UserBookingStats,
)
from app.services.booking_events import BookingEvent, BookingEventHub, BookingEventType
from app.services.booking_store import BookingStore, BookingStoreError, create_booking_store
from app.services.calendar_grid import resolve_timezone, to_calendar_time
from app.services.room_store import RoomStore, RoomStoreError, create_room_store
from app.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)

QUICK_BOOKING_ROUNDING_MINUTES = 15


def booking_from_record(
    record: Mapping[str, Any],
    *,
    room: Mapping[str, Any] | None = None,
    profile: Mapping[str, Any] | None = None,
) -> ExtendedBooking:
    return ExtendedBooking(
        id=str(record.get("_id", "")),
        room_id=str(record.get("room_id", "")),
        user_id=str(record.get("user_id", "")),
        title=record.get("title"),
        start_time=record["start_time"],
        end_time=record["end_time"],
        duration_minutes=int(record.get("duration_minutes", 0)),
        status=BookingStatus(str(record.get("status", BookingStatus.CONFIRMED))),
        created_at=record.get("created_at") or record["start_time"],
        room=(
            BookingRoomSummary(
                name=str(room.get("name", "")),
                capacity=int(room.get("capacity", 0)),
                location=room.get("location"),
            )
            if room
            else None
        ),
        profile=(
            BookingProfileSummary(
                email=str(profile.get("email", "")),
                full_name=profile.get("full_name") or None,
            )
            if profile
            else None
        ),
    )


class BookingService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        room_store: RoomStore | None = None,
        booking_store: BookingStore | None = None,
        user_store: UserStore | None = None,
        event_hub: BookingEventHub | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.room_store = room_store or create_room_store(self.settings)
        self.booking_store = booking_store or create_booking_store(self.settings)
        self.user_store = user_store or create_user_store(self.settings)
        self.event_hub = event_hub
        self.tz = resolve_timezone(self.settings.calendar_timezone)

    def create_booking(
        self,
        payload: BookingCreateRequest,
        current_user: CurrentUserResponse,
    ) -> BookingCreatedResponse:
        start_time = self._combine_date_time(payload.start_date, payload.start_time)
        end_time = self._combine_date_time(payload.end_date, payload.end_time)
        self._assert_valid_range(start_time, end_time)
        room = self._get_active_room(payload.room_id)
        self._assert_room_available(
            room_id=str(room["_id"]),
            start_time=start_time,
            end_time=end_time,
            detail="Room is not available for the selected time",
        )

        record = self._create_record(
            room_id=str(room["_id"]),
            user_id=current_user.id,
            title=payload.title.strip() or None,
            start_time=start_time,
            end_time=end_time,
        )
        return BookingCreatedResponse(id=str(record["_id"]))

    def create_quick_booking(
        self,
        payload: QuickBookingRequest,
        current_user: CurrentUserResponse,
        *,
        now: datetime | None = None,
    ) -> BookingCreatedResponse:
        current_time = to_calendar_time(now or datetime.now(UTC), self.tz)
        rounded_minutes = math.ceil(current_time.minute / QUICK_BOOKING_ROUNDING_MINUTES) * QUICK_BOOKING_ROUNDING_MINUTES
        start_time = current_time.replace(minute=0, second=0, microsecond=0) + timedelta(minutes=rounded_minutes)
        end_time = start_time + timedelta(minutes=payload.duration_minutes)

        room = self._get_active_room(payload.room_id)
        self._assert_room_available(
            room_id=str(room["_id"]),
            start_time=start_time,
            end_time=end_time,
            detail="Room is not available for quick booking",
        )
        title = (payload.title or "").strip() or self.settings.quick_booking_title
        record = self._create_record(
            room_id=str(room["_id"]),
            user_id=current_user.id,
            title=title,
            start_time=start_time,
            end_time=end_time,
        )
        return BookingCreatedResponse(id=str(record["_id"]))

    def get_user_bookings(
        self,
        current_user: CurrentUserResponse,
        *,
        include_history: bool = True,
        now: datetime | None = None,
    ) -> BookingListResponse:
        starts_from = None if include_history else (now or datetime.now(UTC))
        records = self._list_records(user_id=current_user.id, starts_from=starts_from)
        return BookingListResponse(items=self._extend(records, include_profile=True))

    def get_room_bookings(
        self,
        room_id: str,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
        include_user_info: bool = False,
    ) -> BookingListResponse:
        records = self._list_records(
            room_id=room_id.strip(),
            starts_from=self._day_start(start_date) if start_date else None,
            starts_until=self._day_end(end_date) if end_date else None,
        )
        return BookingListResponse(items=self._extend(records, include_profile=include_user_info))

    def get_bookings_for_date(self, day: date) -> BookingListResponse:
        records = self._list_records(starts_from=self._day_start(day), starts_until=self._day_end(day))
        return BookingListResponse(items=self._extend(records, include_profile=True))

    def get_booking(self, booking_id: str) -> ExtendedBooking:
        record = self._get_record(booking_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found.",
            )
        return self._extend([record], include_profile=True)[0]

    def update_booking(
        self,
        booking_id: str,
        payload: BookingUpdateRequest,
        current_user: CurrentUserResponse,
    ) -> ExtendedBooking:
        existing = self._get_owned_record(booking_id, current_user)
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)

        if "start_time" in updates or "end_time" in updates:
            start_time = to_calendar_time(updates.get("start_time", existing["start_time"]), self.tz)
            end_time = to_calendar_time(updates.get("end_time", existing["end_time"]), self.tz)
            self._assert_valid_range(start_time, end_time)
            self._assert_room_available(
                room_id=str(existing["room_id"]),
                start_time=start_time,
                end_time=end_time,
                exclude_booking_id=str(existing["_id"]),
                detail="Room is not available for the updated time",
            )
            updates["start_time"] = start_time.astimezone(UTC)
            updates["end_time"] = end_time.astimezone(UTC)
        if "title" in updates:
            updates["title"] = updates["title"].strip() or None

        updated = self._apply_update(existing, current_user, updates)
        return self._extend([updated], include_profile=True)[0]

    def cancel_booking(self, booking_id: str, current_user: CurrentUserResponse) -> ExtendedBooking:
        existing = self._get_owned_record(booking_id, current_user)
        updated = self._apply_update(existing, current_user, {"status": BookingStatus.CANCELLED.value})
        logger.info("Booking cancelled booking_id=%s user_id=%s", booking_id, current_user.id)
        return self._extend([updated], include_profile=True)[0]

    def delete_booking(self, booking_id: str, current_user: CurrentUserResponse) -> None:
        try:
            deleted = self.booking_store.delete_booking(booking_id.strip(), user_id=current_user.id)
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to delete booking.",
            ) from exc
        if not deleted:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found.",
            )
        logger.info("Booking deleted booking_id=%s user_id=%s", booking_id, current_user.id)
        self._publish(BookingEvent(type=BookingEventType.DELETE, old=deleted))

    def get_user_booking_stats(
        self,
        current_user: CurrentUserResponse,
        *,
        now: datetime | None = None,
    ) -> UserBookingStats:
        current_time = now or datetime.now(UTC)
        records = self._list_records(user_id=current_user.id)
        upcoming = [record for record in records if record["start_time"] >= current_time]
        total_minutes = sum(int(record.get("duration_minutes", 0)) for record in records)

        room_names: Counter[str] = Counter()
        for booking in self._extend(records, include_profile=False):
            if booking.room and booking.room.name:
                room_names[booking.room.name] += 1
        favorite_room = room_names.most_common(1)[0][0] if room_names else None

        return UserBookingStats(
            total_bookings=len(records),
            upcoming_bookings=len(upcoming),
            total_hours_booked=math.floor(total_minutes / 60 * 10 + 0.5) / 10,
            favorite_room=favorite_room,
        )

    def _create_record(
        self,
        *,
        room_id: str,
        user_id: str,
        title: str | None,
        start_time: datetime,
        end_time: datetime,
    ) -> dict[str, Any]:
        try:
            record = self.booking_store.create_booking(
                room_id=room_id,
                user_id=user_id,
                title=title,
                start_time=start_time.astimezone(UTC),
                end_time=end_time.astimezone(UTC),
                status=BookingStatus.CONFIRMED.value,
            )
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to persist booking.",
            ) from exc
        logger.info(
            "Booking created booking_id=%s room_id=%s user_id=%s start=%s end=%s",
            record.get("_id"),
            room_id,
            user_id,
            start_time.isoformat(),
            end_time.isoformat(),
        )
        self._publish(BookingEvent(type=BookingEventType.INSERT, new=record))
        return record

    def _apply_update(
        self,
        existing: Mapping[str, Any],
        current_user: CurrentUserResponse,
        updates: Mapping[str, Any],
    ) -> dict[str, Any]:
        try:
            updated = self.booking_store.update_booking(
                str(existing["_id"]),
                user_id=current_user.id,
                updates=updates,
            )
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to update booking.",
            ) from exc
        if not updated:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found.",
            )
        self._publish(BookingEvent(type=BookingEventType.UPDATE, new=updated, old=existing))
        return updated

    def _assert_room_available(
        self,
        *,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        detail: str,
        exclude_booking_id: str | None = None,
    ) -> None:
        try:
            has_conflict = self.booking_store.has_conflict(
                room_id,
                start_time,
                end_time,
                exclude_booking_id=exclude_booking_id,
            )
        except BookingStoreError as exc:
            logger.warning("Conflict check failed room_id=%s", room_id)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to check booking conflicts.",
            ) from exc
        if has_conflict:
            logger.info(
                "Booking conflict room_id=%s start=%s end=%s",
                room_id,
                start_time.isoformat(),
                end_time.isoformat(),
            )
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    def _assert_valid_range(self, start_time: datetime, end_time: datetime) -> None:
        if end_time <= start_time:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="End time must be after start time",
            )

    def _get_active_room(self, room_id: str) -> dict[str, Any]:
        try:
            room = self.room_store.get_room(room_id.strip())
        except RoomStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query room storage.",
            ) from exc
        if not room or not room.get("is_active", True):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Room not found.",
            )
        return room

    def _get_record(self, booking_id: str) -> dict[str, Any] | None:
        try:
            return self.booking_store.get_booking(booking_id.strip())
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query booking storage.",
            ) from exc

    def _get_owned_record(self, booking_id: str, current_user: CurrentUserResponse) -> dict[str, Any]:
        record = self._get_record(booking_id)
        if not record or record.get("user_id") != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found.",
            )
        return record

    def _list_records(self, **criteria: Any) -> list[dict[str, Any]]:
        try:
            return self.booking_store.list_bookings(**criteria)
        except BookingStoreError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to query booking storage.",
            ) from exc

    def _extend(
        self,
        records: list[dict[str, Any]],
        *,
        include_profile: bool,
    ) -> list[ExtendedBooking]:
        rooms: dict[str, dict[str, Any] | None] = {}
        profiles: dict[str, dict[str, Any]] = {}
        if include_profile:
            profiles = self.user_store.list_users_by_ids([str(record.get("user_id", "")) for record in records])

        bookings: list[ExtendedBooking] = []
        for record in records:
            room_id = str(record.get("room_id", ""))
            if room_id not in rooms:
                try:
                    rooms[room_id] = self.room_store.get_room(room_id)
                except RoomStoreError as exc:
                    raise HTTPException(
                        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                        detail="Unable to query room storage.",
                    ) from exc
            bookings.append(
                booking_from_record(
                    record,
                    room=rooms[room_id],
                    profile=profiles.get(str(record.get("user_id", ""))),
                ),
            )
        return bookings

    def _combine_date_time(self, raw_date: str, raw_time: str) -> datetime:
        try:
            parsed = datetime.fromisoformat(f"{raw_date.strip()}T{raw_time.strip()}")
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Invalid booking date or time.",
            ) from exc
        return to_calendar_time(parsed, self.tz)

    def _day_start(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    def _day_end(self, day: date) -> datetime:
        return datetime.combine(day, time(23, 59, 59), tzinfo=self.tz)

    def _publish(self, event: BookingEvent) -> None:
        if self.event_hub is None:
            return
        self.event_hub.publish(event)
