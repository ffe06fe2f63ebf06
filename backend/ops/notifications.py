"""
Scoped notification center.

A NotificationCenter is a plain publish/subscribe object. It is owned by
whoever creates it (RequestScopeMiddleware creates one per request) and
handed to consumers explicitly; there is no process-wide instance.

Usage:
    center = NotificationCenter()
    unsubscribe = center.subscribe(lambda n: print(n.message))
    center.success("Invoice created successfully")
    pending = center.drain()
    unsubscribe()
"""
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class Notification:
    id: int
    level: NotificationLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "level": self.level.value,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


Subscriber = Callable[[Notification], None]


class NotificationCenter:
    """Collects notifications and fans them out to subscribers."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._subscribers: List[Subscriber] = []
        self._pending: List[Notification] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that removes it again."""
        self._subscribers.append(subscriber)

        def unsubscribe():
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(
            id=next(self._ids),
            level=NotificationLevel(level),
            message=message,
        )
        self._pending.append(notification)
        for subscriber in list(self._subscribers):
            subscriber(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.publish(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self.publish(NotificationLevel.ERROR, message)

    def info(self, message: str) -> Notification:
        return self.publish(NotificationLevel.INFO, message)

    def warning(self, message: str) -> Notification:
        return self.publish(NotificationLevel.WARNING, message)

    @property
    def pending(self) -> List[Notification]:
        return list(self._pending)

    def drain(self) -> List[Notification]:
        """Return and forget every notification published so far."""
        pending, self._pending = self._pending, []
        return pending


def log_notification(notification: Notification) -> None:
    """Subscriber that mirrors notifications into the application log."""
    level = logging.WARNING if notification.level == NotificationLevel.ERROR else logging.INFO
    logger.log(
        level,
        notification.message,
        extra={"notification_level": notification.level.value},
    )
