"""In-process publish/subscribe bus decoupling the monitor from notifiers."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, Iterable, List

from core.events import EventEnvelope, EventType

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[EventEnvelope], None]


class EventBus:
    """Synchronous fan-out of events to the handlers registered per type."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: EventType | str, handler: Subscriber) -> None:
        self._subscribers[_key(event_type)].append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Subscriber) -> None:
        handlers = self._subscribers.get(_key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, envelope: EventEnvelope) -> None:
        """Deliver ``envelope`` to every subscriber of its type.

        A subscriber that raises is logged and skipped so the publisher, which
        is usually the monitoring loop, never sees the failure.
        """

        for handler in list(self._subscribers.get(envelope.event.event_type.value, [])):
            try:
                handler(envelope)
            except Exception:
                LOGGER.exception("Subscriber %r failed for %s", handler, envelope.event.event_type.value)

    def subscribers(self, event_type: EventType | str) -> Iterable[Subscriber]:
        return tuple(self._subscribers.get(_key(event_type), ()))


def _key(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else event_type


__all__ = ["EventBus", "Subscriber"]
