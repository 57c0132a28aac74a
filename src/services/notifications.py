"""
User-visible notifications (toasts).

Each mutation emits loading -> success | error under one notification id so a
renderer can update the same toast in place. Notifications are published on
the event bus; with echo=True they are also printed, for scripts.
"""

import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Literal

from core.config import DEFAULT_TOAST_DURATION_MS, MUTATION_HISTORY_LIMIT
from core.events import NOTIFICATION, EventBus

Level = Literal["loading", "success", "error", "warning", "info"]


@dataclass(frozen=True)
class NotificationAction:
    label: str
    callback: Callable[[], object]


@dataclass(frozen=True)
class Notification:
    id: str
    level: Level
    title: str
    description: str | None = None
    duration_ms: int | None = DEFAULT_TOAST_DURATION_MS
    action: NotificationAction | None = field(default=None, compare=False)


class Notifier:
    """Publishes notifications and keeps a bounded history of them."""

    def __init__(self, bus: EventBus | None = None, echo: bool = False):
        self._bus = bus
        self._echo = echo
        self._ids = itertools.count(1)
        self.history: deque[Notification] = deque(maxlen=MUTATION_HISTORY_LIMIT)

    def notify(
        self,
        level: Level,
        title: str,
        *,
        description: str | None = None,
        duration_ms: int | None = DEFAULT_TOAST_DURATION_MS,
        action: NotificationAction | None = None,
        notification_id: str | None = None,
    ) -> Notification:
        notification = Notification(
            id=notification_id or f"toast-{next(self._ids)}",
            level=level,
            title=title,
            description=description,
            duration_ms=duration_ms,
            action=action,
        )
        self.history.append(notification)
        if self._bus is not None:
            self._bus.publish(NOTIFICATION, notification)
        if self._echo:
            suffix = f" ({description})" if description else ""
            print(f"  [{level}] {title}{suffix}")
        return notification

    def loading(self, title: str) -> str:
        """Open a loading notification; returns its id for the follow-up."""
        return self.notify("loading", title, duration_ms=None).id

    def success(self, title: str, notification_id: str | None = None) -> Notification:
        return self.notify("success", title, notification_id=notification_id)

    def error(self, title: str, **kwargs) -> Notification:
        return self.notify("error", title, **kwargs)

    def warning(self, title: str, **kwargs) -> Notification:
        return self.notify("warning", title, **kwargs)

    def info(self, title: str, **kwargs) -> Notification:
        return self.notify("info", title, **kwargs)

    def last(self, level: Level | None = None) -> Notification | None:
        for notification in reversed(self.history):
            if level is None or notification.level == level:
                return notification
        return None
