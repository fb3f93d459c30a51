"""
Manual link service - a person links, relinks or unlinks an evidence item.

A manual decision locks the item against the auto-linking pipeline and
marks both the old and the new activity's evidence set as changed.
"""

from __future__ import annotations

from datetime import datetime

from rdevidence.events import EventBus, EvidenceSetChanged, get_event_bus
from rdevidence.evidence.models import EvidenceItem
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event
from rdevidence.utils.timestamps import utc_now

logger = get_logger(__name__)


class EvidenceNotFoundError(LookupError):
    pass


class ActivityMismatchError(ValueError):
    """Activity is missing or belongs to another project."""


def set_manual_link(
    evidence_id: str,
    activity_id: str | None,
    now: datetime | None = None,
    event_bus: EventBus | None = None,
) -> EvidenceItem:
    """
    Link evidence to an activity (or unlink with activity_id=None) as a person.

    Returns:
        The updated evidence item

    Raises:
        EvidenceNotFoundError: If the evidence does not exist
        ActivityMismatchError: If the activity is unknown or in another project
    """
    item = EvidenceRepository.get_by_id(evidence_id)
    if item is None:
        raise EvidenceNotFoundError(evidence_id)

    if activity_id is not None:
        activity = ActivityRepository.get_by_id(activity_id)
        if activity is None or activity.project_id != item.project_id:
            raise ActivityMismatchError(f"Activity {activity_id} not in project {item.project_id}")

    EvidenceRepository.set_manual_link(evidence_id, activity_id, now or utc_now())
    counter("evidence.manual_link")
    log_event(
        "evidence.manual_link",
        evidence_id=evidence_id,
        previous_activity_id=item.linked_activity_id,
        activity_id=activity_id,
    )

    bus = event_bus or get_event_bus()
    for changed in dict.fromkeys(a for a in (activity_id, item.linked_activity_id) if a):
        if changed == item.linked_activity_id == activity_id:
            continue
        bus.publish(EvidenceSetChanged(activity_id=changed, project_id=item.project_id, cause="manual_link"))

    return EvidenceRepository.get_by_id(evidence_id)
