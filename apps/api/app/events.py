from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.context import get_actor_id, get_correlation_id

logger = logging.getLogger("app.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._subscribers[event_name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(event)
            except Exception as exc:
                # Subscribers run after commit; their failures never undo the write.
                logger.exception("event_handler_failed", extra={"event_name": event_name, "error": str(exc)[:500]})


event_bus = InProcessEventBus()

RECENT_EVENTS_LIMIT = 1000

# Most recent envelopes, newest last.
published_events: deque[dict[str, Any]] = deque(maxlen=RECENT_EVENTS_LIMIT)


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    if envelope.get("actor_user_id") is None:
        envelope["actor_user_id"] = get_actor_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
