"""
In-process event bus connecting the linking engine to the narrative queue.

The linking engine publishes EvidenceSetChanged whenever the set of evidence
linked to an activity changes; the narrative queue subscribes and enqueues a
regeneration job. Read paths never enqueue as a side effect of this bus.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter

logger = get_logger(__name__)


@dataclass(frozen=True)
class EvidenceSetChanged:
    """The evidence linked to an activity changed (gained, lost or re-hashed an item)."""

    activity_id: str
    project_id: str
    cause: str


Handler = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: Any) -> int:
        """
        Deliver an event to every subscriber of its type.

        A failing handler is logged and counted; the remaining handlers still
        run. The publisher's own writes are already committed at this point.

        Returns:
            Number of handlers that completed
        """
        delivered = 0
        for handler in self._handlers.get(type(event), []):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                counter("events.handler_error")
                logger.error("Event handler %s failed for %s: %s", handler, event, e)
        return delivered


@lru_cache(maxsize=1)
def get_event_bus() -> EventBus:
    """Process-wide bus with the narrative queue subscribed."""
    from rdevidence.narratives.queue import subscribe_narrative_queue

    bus = EventBus()
    subscribe_narrative_queue(bus)
    return bus
