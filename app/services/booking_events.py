from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from itertools import count
from typing import Any

logger = logging.getLogger(__name__)


class BookingEventType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class BookingEvent:
    type: BookingEventType
    new: Mapping[str, Any] | None = None
    old: Mapping[str, Any] | None = None

    @property
    def booking(self) -> Mapping[str, Any]:
        return self.new or self.old or {}

    @property
    def user_id(self) -> str | None:
        user_id = self.booking.get("user_id")
        return str(user_id) if user_id else None


BookingEventListener = Callable[[BookingEvent], None]


class Subscription:
    """Handle returned by ``subscribe``; ``unsubscribe`` is safe to call twice."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release = release
        self._lock = threading.Lock()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._release()


class BookingEventHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_key = count(1)
        self._listeners: dict[int, tuple[BookingEventListener, str | None]] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def subscribe(
        self,
        listener: BookingEventListener,
        *,
        user_id: str | None = None,
    ) -> Subscription:
        with self._lock:
            key = next(self._next_key)
            self._listeners[key] = (listener, user_id)
        logger.debug("Booking listener subscribed key=%s user_id=%s", key, user_id)
        return Subscription(lambda: self._remove(key))

    def publish(self, event: BookingEvent) -> int:
        with self._lock:
            targets = [
                listener
                for listener, user_id in self._listeners.values()
                if user_id is None or user_id == event.user_id
            ]

        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Booking listener failed event_type=%s booking_id=%s",
                    event.type.value,
                    event.booking.get("_id"),
                )
        return len(targets)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)
        logger.debug("Booking listener unsubscribed key=%s", key)
