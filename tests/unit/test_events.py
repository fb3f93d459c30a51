"""Unit tests for the in-process event bus"""

from __future__ import annotations

from rdevidence.events import EventBus, EvidenceSetChanged
from rdevidence.observability.telemetry import get_counter

EVENT = EvidenceSetChanged(activity_id="act-1", project_id="proj-1", cause="auto_link")


def test_publish_delivers_to_subscribers():
    received = []
    bus = EventBus()
    bus.subscribe(EvidenceSetChanged, received.append)

    assert bus.publish(EVENT) == 1
    assert received == [EVENT]


def test_failing_handler_does_not_stop_others():
    received = []

    def broken(event):
        raise RuntimeError("queue unavailable")

    bus = EventBus()
    bus.subscribe(EvidenceSetChanged, broken)
    bus.subscribe(EvidenceSetChanged, received.append)

    assert bus.publish(EVENT) == 1
    assert received == [EVENT]
    assert get_counter("events.handler_error") == 1


def test_unsubscribed_event_type_is_ignored():
    assert EventBus().publish(object()) == 0
