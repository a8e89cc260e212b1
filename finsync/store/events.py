"""
Change notification bus.

Every write to the local store publishes a ChangeEvent on the topic of
the table it touched. Live views subscribe to the topics they derive
from and recompute synchronously, so a read right after a write always
sees the write.
"""

from datetime import datetime, timezone
from typing import Callable, NamedTuple

import structlog


QUEUE_TOPIC = "sync_queue"
METADATA_TOPIC = "sync_metadata"
NOTIFICATION_TOPIC = "sync_notification"

logger = structlog.get_logger("finsync.store.events")


class ChangeEvent(NamedTuple):
    topic: str
    ts: str
    payload: dict


Handler = Callable[[ChangeEvent], None]


class EventBus:
    def __init__(self):
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        topic = str(getattr(topic, "value", topic))
        self._subscribers.setdefault(topic, []).append(handler)
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        topic = str(getattr(topic, "value", topic))
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, payload: dict) -> None:
        topic = str(getattr(topic, "value", topic))
        if not self._subscribers.get(topic):
            return

        event = ChangeEvent(
            topic=topic,
            ts=datetime.now(timezone.utc).isoformat(),
            payload=payload,
        )
        # Copy: handlers may unsubscribe while we iterate
        for handler in list(self._subscribers[topic]):
            try:
                handler(event)
            except Exception:
                # The write already happened; one broken view must not
                # stop the others from seeing it.
                logger.exception("change_handler_failed", topic=topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(str(getattr(topic, "value", topic)), []))
