"""
Narrative read and refresh operations.

Reading a cached narrative recomputes its input hash; a stale narrative is
still returned, and a regeneration job is queued. Refresh requests are
rate-limited by a regeneration cooldown and the daily budget unless forced.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from rdevidence.config import NARRATIVE_REGEN_COOLDOWN_HOURS
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository, ProjectRepository
from rdevidence.infrastructure.budget import check_narrative_budget
from rdevidence.narratives.queue import PRIORITY_DEFAULT, PRIORITY_USER, NarrativeJobQueue
from rdevidence.narratives.repository import ActivityNarrativeRepository
from rdevidence.narratives.staleness import check_staleness
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter
from rdevidence.utils.timestamps import hours_between, to_db_ts, utc_now

logger = get_logger(__name__)


class ActivityNotFoundError(LookupError):
    pass


def get_narrative(activity_id: str) -> dict[str, Any]:
    """
    Return the cached narrative for an activity, flagging (and re-queuing) stale ones.

    Returns:
        {"cached": False} when nothing is cached, otherwise the cached fields
        plus "stale" and "requeued"
    """
    narrative = ActivityNarrativeRepository.get(activity_id)
    if narrative is None:
        return {"cached": False}

    response: dict[str, Any] = {
        "cached": True,
        "text": narrative.text,
        "confidence": narrative.confidence.value,
        "missing_steps": [step.value for step in narrative.missing_steps],
        "generated_at": to_db_ts(narrative.generated_at),
        "input_hash": narrative.input_hash,
        "version": narrative.version,
        "stale": False,
        "requeued": False,
    }

    activity = ActivityRepository.get_by_id(activity_id)
    project = ProjectRepository.get_by_id(activity.project_id) if activity else None
    if activity is None or project is None:
        return response

    staleness = check_staleness(
        narrative,
        project.current_hypothesis,
        activity,
        EvidenceRepository.list_linked(activity_id),
    )
    if staleness.is_stale:
        counter("narratives.stale")
        NarrativeJobQueue.enqueue(activity_id, activity.project_id, PRIORITY_DEFAULT)
        response["stale"] = True
        response["requeued"] = True
    return response


def refresh_narrative(activity_id: str, force: bool = False, now: datetime | None = None) -> dict[str, Any]:
    """
    Queue a regeneration for an activity.

    Without force, blocked by the regeneration cooldown or the project's
    daily budget. Forced requests jump the queue.

    Raises:
        ActivityNotFoundError: If the activity does not exist
    """
    now = now or utc_now()
    activity = ActivityRepository.get_by_id(activity_id)
    if activity is None:
        raise ActivityNotFoundError(activity_id)

    if not force:
        narrative = ActivityNarrativeRepository.get(activity_id)
        if narrative is not None:
            hours_since = hours_between(narrative.generated_at, now)
            if hours_since < NARRATIVE_REGEN_COOLDOWN_HOURS:
                return {
                    "queued": False,
                    "blocked": "regen_cooldown",
                    "hours_remaining": math.ceil(NARRATIVE_REGEN_COOLDOWN_HOURS - hours_since),
                }

        budget = check_narrative_budget(activity.project_id, now=now)
        if not budget.is_allowed:
            return {
                "queued": False,
                "blocked": "daily_budget_exceeded",
                "message": "Daily snippet budget reached. Will process tomorrow.",
            }

    priority = PRIORITY_USER if force else PRIORITY_DEFAULT
    NarrativeJobQueue.enqueue(activity_id, activity.project_id, priority, now=now)
    logger.info("Enqueued narrative job for activity %s (priority: %d, force: %s)", activity_id, priority, force)
    return {
        "queued": True,
        "priority": priority,
        "message": "Refresh queued (high priority)" if force else "Refresh queued",
    }
