from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings
from app.schemas.room import RoomFilters


class RoomStoreError(RuntimeError):
    pass


class RoomStore(ABC):
    @abstractmethod
    def list_rooms(self, filters: RoomFilters | None = None) -> list[dict[str, Any]]:
        """Active rooms matching ``filters``, ordered by name."""
        raise NotImplementedError

    @abstractmethod
    def get_room(self, room_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_room(self, values: Mapping[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class InMemoryRoomStore(RoomStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._rooms_by_id: dict[str, dict[str, Any]] = {}

    def list_rooms(self, filters: RoomFilters | None = None) -> list[dict[str, Any]]:
        active_filters = filters or RoomFilters()
        rooms = [
            dict(room)
            for room in self._rooms_by_id.values()
            if room.get("is_active", True) and _room_matches(room, active_filters)
        ]
        return sorted(rooms, key=lambda room: str(room.get("name", "")))

    def get_room(self, room_id: str) -> dict[str, Any] | None:
        room = self._rooms_by_id.get(room_id)
        if not room:
            return None
        return dict(room)

    def create_room(self, values: Mapping[str, Any]) -> dict[str, Any]:
        room_id = str(self._next_id)
        self._next_id += 1
        room = {
            **_normalize_room_values(values),
            "_id": room_id,
            "created_at": datetime.now(UTC),
        }
        self._rooms_by_id[room_id] = room
        return dict(room)


class MongoRoomStore(RoomStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        rooms_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._rooms = self._client[db_name][rooms_collection_name]
        self._rooms.create_index("name")

    def list_rooms(self, filters: RoomFilters | None = None) -> list[dict[str, Any]]:
        from pymongo import ASCENDING
        from pymongo.errors import PyMongoError

        query = _build_room_query(filters or RoomFilters())
        try:
            records = list(self._rooms.find(query).sort("name", ASCENDING))
        except PyMongoError as exc:
            raise RoomStoreError("Unable to list rooms.") from exc
        return [_serialize_room_record(record) for record in records]

    def get_room(self, room_id: str) -> dict[str, Any] | None:
        from bson import ObjectId
        from bson.errors import InvalidId
        from pymongo.errors import PyMongoError

        try:
            object_id = ObjectId(room_id)
        except InvalidId:
            return None
        try:
            record = self._rooms.find_one({"_id": object_id})
        except PyMongoError as exc:
            raise RoomStoreError("Unable to read room.") from exc
        if not record:
            return None
        return _serialize_room_record(record)

    def create_room(self, values: Mapping[str, Any]) -> dict[str, Any]:
        from pymongo.errors import PyMongoError

        payload = {**_normalize_room_values(values), "created_at": datetime.now(UTC)}
        try:
            insert_result = self._rooms.insert_one(payload)
            record = self._rooms.find_one({"_id": insert_result.inserted_id})
        except PyMongoError as exc:
            raise RoomStoreError("Unable to create room.") from exc
        if not record:
            raise RoomStoreError("Unable to read created room.")
        return _serialize_room_record(record)


def _normalize_room_values(values: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": str(values.get("name", "")).strip(),
        "capacity": int(values.get("capacity", 1)),
        "description": values.get("description"),
        "location": values.get("location"),
        "equipment": sorted({str(item).strip() for item in values.get("equipment") or [] if str(item).strip()}),
        "features": sorted({str(item).strip() for item in values.get("features") or [] if str(item).strip()}),
        "image_url": values.get("image_url"),
        "floor": values.get("floor"),
        "is_active": bool(values.get("is_active", True)),
    }


def _room_matches(room: Mapping[str, Any], filters: RoomFilters) -> bool:
    if filters.search:
        needle = filters.search.strip().lower()
        haystacks = [room.get("name"), room.get("description"), room.get("location")]
        if not any(needle in str(value).lower() for value in haystacks if value):
            return False
    capacity = int(room.get("capacity", 0))
    if filters.capacity_min and capacity < filters.capacity_min:
        return False
    if filters.capacity_max and capacity > filters.capacity_max:
        return False
    if filters.location and room.get("location") != filters.location:
        return False
    if filters.floor and room.get("floor") != filters.floor:
        return False
    if filters.equipment and not set(filters.equipment).issubset(room.get("equipment") or []):
        return False
    if filters.features and not set(filters.features).issubset(room.get("features") or []):
        return False
    return True


def _build_room_query(filters: RoomFilters) -> dict[str, Any]:
    query: dict[str, Any] = {"is_active": True}
    if filters.search and filters.search.strip():
        pattern = {"$regex": re.escape(filters.search.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}, {"location": pattern}]
    capacity_query: dict[str, int] = {}
    if filters.capacity_min:
        capacity_query["$gte"] = filters.capacity_min
    if filters.capacity_max:
        capacity_query["$lte"] = filters.capacity_max
    if capacity_query:
        query["capacity"] = capacity_query
    if filters.location:
        query["location"] = filters.location
    if filters.floor:
        query["floor"] = filters.floor
    if filters.equipment:
        query["equipment"] = {"$all": list(filters.equipment)}
    if filters.features:
        query["features"] = {"$all": list(filters.features)}
    return query


def _serialize_room_record(record: Mapping[str, Any]) -> dict[str, Any]:
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def create_room_store(settings: Settings) -> RoomStore:
    return _create_room_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_rooms_collection=settings.mongodb_rooms_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_room_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_rooms_collection: str,
    mongodb_connect_timeout_ms: int,
) -> RoomStore:
    if data_store == "mongodb":
        return MongoRoomStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            rooms_collection_name=mongodb_rooms_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryRoomStore()


def clear_room_store_cache() -> None:
    _create_room_store_cached.cache_clear()
