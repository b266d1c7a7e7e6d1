from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings


class UserStore(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        role: str,
    ) -> dict[str, Any]:
        raise NotImplementedError

    def list_users_by_ids(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        users: dict[str, dict[str, Any]] = {}
        for user_id in user_ids:
            if user_id in users:
                continue
            user = self.get_user_by_id(user_id)
            if user:
                users[user_id] = user
        return users


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._users_by_id: dict[str, dict[str, Any]] = {}
        self._user_id_by_email: dict[str, str] = {}

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        user = self._users_by_id.get(user_id)
        if not user:
            return None
        return dict(user)

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        user_id = self._user_id_by_email.get(_normalize_email(email))
        if not user_id:
            return None
        return self.get_user_by_id(user_id)

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        role: str,
    ) -> dict[str, Any]:
        normalized_email = _normalize_email(email)
        if normalized_email in self._user_id_by_email:
            raise ValueError("email_already_exists")

        user_id = str(self._next_id)
        self._next_id += 1
        user = {
            "_id": user_id,
            "email": normalized_email,
            "full_name": full_name.strip(),
            "password_hash": password_hash,
            "role": role.strip().lower(),
            "created_at": datetime.now(UTC),
        }
        self._users_by_id[user_id] = user
        self._user_id_by_email[normalized_email] = user_id
        return dict(user)


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        users_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._users = self._client[db_name][users_collection_name]
        self._users.create_index("email", unique=True)

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        from bson import ObjectId
        from bson.errors import InvalidId

        try:
            object_id = ObjectId(user_id)
        except InvalidId:
            return None
        return _serialize_user_record(self._users.find_one({"_id": object_id}))

    def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        record = self._users.find_one({"email": _normalize_email(email)})
        return _serialize_user_record(record)

    def list_users_by_ids(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        from bson import ObjectId

        object_ids = [ObjectId(user_id) for user_id in set(user_ids) if ObjectId.is_valid(user_id)]
        if not object_ids:
            return {}
        users: dict[str, dict[str, Any]] = {}
        for record in self._users.find({"_id": {"$in": object_ids}}, {"password_hash": 0}):
            serialized = _serialize_user_record(record)
            if serialized:
                users[serialized["_id"]] = serialized
        return users

    def create_user(
        self,
        *,
        email: str,
        full_name: str,
        password_hash: str,
        role: str,
    ) -> dict[str, Any]:
        from pymongo.errors import DuplicateKeyError

        payload = {
            "email": _normalize_email(email),
            "full_name": full_name.strip(),
            "password_hash": password_hash,
            "role": role.strip().lower(),
            "created_at": datetime.now(UTC),
        }
        try:
            insert_result = self._users.insert_one(payload)
        except DuplicateKeyError as exc:
            raise ValueError("email_already_exists") from exc
        created = _serialize_user_record(self._users.find_one({"_id": insert_result.inserted_id}))
        if not created:
            raise RuntimeError("Unable to read created user.")
        return created


def _serialize_user_record(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if data_store == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            users_collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
