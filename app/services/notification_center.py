from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from itertools import count

from app.schemas.notification import Notification, NotificationType
from app.services.booking_events import BookingEvent, BookingEventHub, BookingEventType, Subscription

logger = logging.getLogger(__name__)

NotificationListener = Callable[[list[Notification]], None]


class NotificationCenter:
    """Transient user notifications with explicit subscribers.

    One instance lives on the application state; listeners receive the full
    list of active notifications after every change.
    """

    def __init__(
        self,
        *,
        default_duration_seconds: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.default_duration_seconds = default_duration_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._ids = count(1)
        self._listener_keys = count(1)
        self._notifications: list[Notification] = []
        self._listeners: dict[int, NotificationListener] = {}

    def add(
        self,
        *,
        type: NotificationType,
        title: str,
        message: str | None = None,
        recipient_user_id: str | None = None,
        duration_seconds: int | None = None,
    ) -> Notification:
        created_at = self._clock()
        duration = duration_seconds or self.default_duration_seconds
        with self._lock:
            self._purge_expired(created_at)
            notification = Notification(
                id=f"notification-{next(self._ids)}",
                type=type,
                title=title,
                message=message,
                recipient_user_id=recipient_user_id,
                duration_seconds=duration,
                created_at=created_at,
                expires_at=created_at + timedelta(seconds=duration),
            )
            self._notifications.append(notification)
        self._notify_listeners()
        return notification

    def dismiss(self, notification_id: str, *, recipient_user_id: str | None = None) -> bool:
        with self._lock:
            for index, notification in enumerate(self._notifications):
                if notification.id != notification_id:
                    continue
                if notification.recipient_user_id not in (None, recipient_user_id):
                    return False
                del self._notifications[index]
                break
            else:
                return False
        self._notify_listeners()
        return True

    def list_active(self, *, recipient_user_id: str | None = None) -> list[Notification]:
        """Unexpired notifications; with a recipient, only theirs plus broadcasts."""
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            return [
                notification
                for notification in self._notifications
                if recipient_user_id is None or notification.recipient_user_id in (None, recipient_user_id)
            ]

    @property
    def stored_count(self) -> int:
        with self._lock:
            return len(self._notifications)

    def subscribe(self, listener: NotificationListener) -> Subscription:
        with self._lock:
            key = next(self._listener_keys)
            self._listeners[key] = listener
        return Subscription(lambda: self._remove_listener(key))

    def follow_booking_events(self, hub: BookingEventHub) -> Subscription:
        return hub.subscribe(self._on_booking_event)

    def _on_booking_event(self, event: BookingEvent) -> None:
        booking = event.booking
        title = str(booking.get("title") or "Untitled booking")
        if event.type == BookingEventType.INSERT:
            heading = "Booking confirmed"
            notification_type = NotificationType.SUCCESS
        elif event.type == BookingEventType.DELETE:
            heading = "Booking deleted"
            notification_type = NotificationType.INFO
        elif booking.get("status") == "cancelled":
            heading = "Booking cancelled"
            notification_type = NotificationType.INFO
        else:
            heading = "Booking updated"
            notification_type = NotificationType.SUCCESS

        self.add(
            type=notification_type,
            title=heading,
            message=title,
            recipient_user_id=event.user_id,
        )

    def _notify_listeners(self) -> None:
        active = self.list_active()
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(active)
            except Exception:
                logger.exception("Notification listener failed")

    def _purge_expired(self, now: datetime) -> None:
        self._notifications = [
            notification
            for notification in self._notifications
            if notification.expires_at > now
        ]

    def _remove_listener(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)
