"""
In-process publish/subscribe bus.

Components publish on write and interested components subscribe by topic.
Handlers run synchronously, in subscription order.
"""

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

# Topics
TASKS_CHANGED = "tasks.changed"
SETTINGS_CHANGED = "settings.changed"
NOTIFICATION = "notification"


class EventBus:
    """Topic-based message bus decoupled from any transport."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._handlers[topic].append(handler)

        def unsubscribe():
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> int:
        """Deliver payload to every handler of topic; returns the handler count."""
        handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            handler(payload)
        logger.debug("published %s to %d handler(s)", topic, len(handlers))
        return len(handlers)
