from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings

CONFIRMED_STATUS = "confirmed"
_UPDATABLE_FIELDS = frozenset({"title", "start_time", "end_time", "status"})


class BookingStoreError(RuntimeError):
    pass


class BookingStore(ABC):
    @abstractmethod
    def create_booking(
        self,
        *,
        room_id: str,
        user_id: str,
        title: str | None,
        start_time: datetime,
        end_time: datetime,
        status: str = CONFIRMED_STATUS,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_booking(self, booking_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def update_booking(
        self,
        booking_id: str,
        *,
        user_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        """Apply ``updates`` to a booking owned by ``user_id``; None when no such booking."""
        raise NotImplementedError

    @abstractmethod
    def delete_booking(self, booking_id: str, *, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_bookings(
        self,
        *,
        room_id: str | None = None,
        user_id: str | None = None,
        starts_from: datetime | None = None,
        starts_until: datetime | None = None,
        ends_after: datetime | None = None,
        status: str | None = CONFIRMED_STATUS,
    ) -> list[dict[str, Any]]:
        """Bookings ordered by start time; start bounds are inclusive, ``ends_after`` is exclusive."""
        raise NotImplementedError

    @abstractmethod
    def has_conflict(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        exclude_booking_id: str | None = None,
    ) -> bool:
        """True when a confirmed booking of the room overlaps [start_time, end_time)."""
        raise NotImplementedError

    def list_room_bookings(
        self,
        room_id: str,
        *,
        starts_from: datetime | None = None,
        starts_until: datetime | None = None,
    ) -> list[dict[str, Any]]:
        return self.list_bookings(
            room_id=room_id,
            starts_from=starts_from,
            starts_until=starts_until,
        )


class InMemoryBookingStore(BookingStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._bookings_by_id: dict[str, dict[str, Any]] = {}

    def create_booking(
        self,
        *,
        room_id: str,
        user_id: str,
        title: str | None,
        start_time: datetime,
        end_time: datetime,
        status: str = CONFIRMED_STATUS,
    ) -> dict[str, Any]:
        booking_id = str(self._next_id)
        self._next_id += 1
        booking = {
            "_id": booking_id,
            "room_id": room_id,
            "user_id": user_id,
            "title": title,
            "start_time": start_time,
            "end_time": end_time,
            "duration_minutes": _duration_minutes(start_time, end_time),
            "status": status,
            "created_at": datetime.now(UTC),
        }
        self._bookings_by_id[booking_id] = booking
        return dict(booking)

    def get_booking(self, booking_id: str) -> dict[str, Any] | None:
        booking = self._bookings_by_id.get(booking_id)
        if not booking:
            return None
        return dict(booking)

    def update_booking(
        self,
        booking_id: str,
        *,
        user_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        booking = self._bookings_by_id.get(booking_id)
        if not booking or booking.get("user_id") != user_id:
            return None
        booking.update(
            {key: value for key, value in updates.items() if key in _UPDATABLE_FIELDS},
        )
        booking["duration_minutes"] = _duration_minutes(booking["start_time"], booking["end_time"])
        return dict(booking)

    def delete_booking(self, booking_id: str, *, user_id: str) -> dict[str, Any] | None:
        booking = self._bookings_by_id.get(booking_id)
        if not booking or booking.get("user_id") != user_id:
            return None
        return self._bookings_by_id.pop(booking_id)

    def list_bookings(
        self,
        *,
        room_id: str | None = None,
        user_id: str | None = None,
        starts_from: datetime | None = None,
        starts_until: datetime | None = None,
        ends_after: datetime | None = None,
        status: str | None = CONFIRMED_STATUS,
    ) -> list[dict[str, Any]]:
        matches: list[dict[str, Any]] = []
        for booking in self._bookings_by_id.values():
            if room_id is not None and booking.get("room_id") != room_id:
                continue
            if user_id is not None and booking.get("user_id") != user_id:
                continue
            if status is not None and booking.get("status") != status:
                continue
            if starts_from is not None and booking["start_time"] < starts_from:
                continue
            if starts_until is not None and booking["start_time"] > starts_until:
                continue
            if ends_after is not None and booking["end_time"] <= ends_after:
                continue
            matches.append(dict(booking))
        return sorted(matches, key=lambda booking: booking["start_time"])

    def has_conflict(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        exclude_booking_id: str | None = None,
    ) -> bool:
        for booking in self._bookings_by_id.values():
            if booking.get("room_id") != room_id or booking.get("status") != CONFIRMED_STATUS:
                continue
            if exclude_booking_id is not None and booking.get("_id") == exclude_booking_id:
                continue
            if booking["start_time"] < end_time and booking["end_time"] > start_time:
                return True
        return False


class MongoBookingStore(BookingStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        bookings_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import ASCENDING, MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._bookings = self._client[db_name][bookings_collection_name]
        self._bookings.create_index([("room_id", ASCENDING), ("start_time", ASCENDING)])
        self._bookings.create_index([("user_id", ASCENDING), ("start_time", ASCENDING)])

    def create_booking(
        self,
        *,
        room_id: str,
        user_id: str,
        title: str | None,
        start_time: datetime,
        end_time: datetime,
        status: str = CONFIRMED_STATUS,
    ) -> dict[str, Any]:
        from pymongo.errors import PyMongoError

        payload = {
            "room_id": room_id,
            "user_id": user_id,
            "title": title,
            "start_time": start_time,
            "end_time": end_time,
            "duration_minutes": _duration_minutes(start_time, end_time),
            "status": status,
            "created_at": datetime.now(UTC),
        }
        try:
            insert_result = self._bookings.insert_one(payload)
            record = self._bookings.find_one({"_id": insert_result.inserted_id})
        except PyMongoError as exc:
            raise BookingStoreError("Unable to create booking.") from exc
        if not record:
            raise BookingStoreError("Unable to read created booking.")
        return _serialize_booking_record(record)

    def get_booking(self, booking_id: str) -> dict[str, Any] | None:
        from pymongo.errors import PyMongoError

        object_id = _parse_object_id(booking_id)
        if object_id is None:
            return None
        try:
            record = self._bookings.find_one({"_id": object_id})
        except PyMongoError as exc:
            raise BookingStoreError("Unable to read booking.") from exc
        if not record:
            return None
        return _serialize_booking_record(record)

    def update_booking(
        self,
        booking_id: str,
        *,
        user_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        from pymongo import ReturnDocument
        from pymongo.errors import PyMongoError

        object_id = _parse_object_id(booking_id)
        if object_id is None:
            return None
        current = self.get_booking(booking_id)
        if not current or current.get("user_id") != user_id:
            return None

        changes = {key: value for key, value in updates.items() if key in _UPDATABLE_FIELDS}
        changes["duration_minutes"] = _duration_minutes(
            changes.get("start_time", current["start_time"]),
            changes.get("end_time", current["end_time"]),
        )
        try:
            record = self._bookings.find_one_and_update(
                {"_id": object_id, "user_id": user_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise BookingStoreError("Unable to update booking.") from exc
        if not record:
            return None
        return _serialize_booking_record(record)

    def delete_booking(self, booking_id: str, *, user_id: str) -> dict[str, Any] | None:
        from pymongo.errors import PyMongoError

        object_id = _parse_object_id(booking_id)
        if object_id is None:
            return None
        try:
            record = self._bookings.find_one_and_delete({"_id": object_id, "user_id": user_id})
        except PyMongoError as exc:
            raise BookingStoreError("Unable to delete booking.") from exc
        if not record:
            return None
        return _serialize_booking_record(record)

    def list_bookings(
        self,
        *,
        room_id: str | None = None,
        user_id: str | None = None,
        starts_from: datetime | None = None,
        starts_until: datetime | None = None,
        ends_after: datetime | None = None,
        status: str | None = CONFIRMED_STATUS,
    ) -> list[dict[str, Any]]:
        from pymongo import ASCENDING
        from pymongo.errors import PyMongoError

        query: dict[str, Any] = {}
        if room_id is not None:
            query["room_id"] = room_id
        if user_id is not None:
            query["user_id"] = user_id
        if status is not None:
            query["status"] = status
        start_query: dict[str, datetime] = {}
        if starts_from is not None:
            start_query["$gte"] = starts_from
        if starts_until is not None:
            start_query["$lte"] = starts_until
        if start_query:
            query["start_time"] = start_query
        if ends_after is not None:
            query["end_time"] = {"$gt": ends_after}

        try:
            records = list(self._bookings.find(query).sort("start_time", ASCENDING))
        except PyMongoError as exc:
            raise BookingStoreError("Unable to list bookings.") from exc
        return [_serialize_booking_record(record) for record in records]

    def has_conflict(
        self,
        room_id: str,
        start_time: datetime,
        end_time: datetime,
        *,
        exclude_booking_id: str | None = None,
    ) -> bool:
        from pymongo.errors import PyMongoError

        query: dict[str, Any] = {
            "room_id": room_id,
            "status": CONFIRMED_STATUS,
            "start_time": {"$lt": end_time},
            "end_time": {"$gt": start_time},
        }
        if exclude_booking_id is not None:
            object_id = _parse_object_id(exclude_booking_id)
            if object_id is not None:
                query["_id"] = {"$ne": object_id}
        try:
            return self._bookings.find_one(query, {"_id": 1}) is not None
        except PyMongoError as exc:
            raise BookingStoreError("Unable to check booking conflicts.") from exc


def _parse_object_id(value: str):
    from bson import ObjectId
    from bson.errors import InvalidId

    try:
        return ObjectId(value)
    except InvalidId:
        return None


def _serialize_booking_record(record: Mapping[str, Any]) -> dict[str, Any]:
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def _duration_minutes(start_time: datetime, end_time: datetime) -> int:
    return max(int((end_time - start_time).total_seconds() // 60), 0)


def create_booking_store(settings: Settings) -> BookingStore:
    return _create_booking_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_bookings_collection=settings.mongodb_bookings_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_booking_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_bookings_collection: str,
    mongodb_connect_timeout_ms: int,
) -> BookingStore:
    if data_store == "mongodb":
        return MongoBookingStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            bookings_collection_name=mongodb_bookings_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryBookingStore()


def clear_booking_store_cache() -> None:
    _create_booking_store_cached.cache_clear()
