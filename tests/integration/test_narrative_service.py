"""Integration tests for narrative read and refresh"""

from __future__ import annotations

from datetime import timedelta

import pytest

from rdevidence.evidence.models import Confidence, SystematicStep
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository, ProjectRepository
from rdevidence.narratives.queue import PRIORITY_DEFAULT, PRIORITY_USER, NarrativeJobQueue
from rdevidence.narratives.repository import ActivityNarrativeRepository
from rdevidence.narratives.service import ActivityNotFoundError, get_narrative, refresh_narrative
from rdevidence.narratives.staleness import compute_input_hash


@pytest.fixture
def setup(make_project, make_activity, make_evidence, now):
    project = make_project()
    activity = make_activity(project.id)
    for step in (SystematicStep.HYPOTHESIS, SystematicStep.EXPERIMENT):
        item = make_evidence(project.id, step=step)
        EvidenceRepository.set_manual_link(item.id, activity.id, now)
    return project, activity


def cache_current(project, activity, generated_at):
    input_hash = compute_input_hash(
        project.current_hypothesis, activity, EvidenceRepository.list_linked(activity.id)
    )
    return ActivityNarrativeRepository.upsert(
        activity.id, "Cached text", Confidence.HIGH, [SystematicStep.CONCLUSION], input_hash,
        snippet_count=2, generated_at=generated_at,
    )


class TestGetNarrative:
    def test_nothing_cached(self, setup):
        _, activity = setup
        assert get_narrative(activity.id) == {"cached": False}
        assert NarrativeJobQueue.count() == 0

    def test_fresh_narrative(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now)

        response = get_narrative(activity.id)

        assert response["cached"] is True
        assert response["text"] == "Cached text"
        assert response["missing_steps"] == ["Conclusion"]
        assert response["stale"] is False
        assert NarrativeJobQueue.count() == 0

    def test_stale_after_uncertainty_edit(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now)
        ActivityRepository.update_text(activity.id, uncertainty="Whether eviction also bounds memory growth")

        response = get_narrative(activity.id)

        assert response["stale"] is True
        assert response["requeued"] is True
        assert response["text"] == "Cached text"
        assert NarrativeJobQueue.get(activity.id).priority == PRIORITY_DEFAULT

    def test_stale_after_hypothesis_edit(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now)
        ProjectRepository.update_hypothesis(project.id, "Eviction policy is the dominant latency factor")

        assert get_narrative(activity.id)["stale"] is True

    def test_stale_after_new_linked_evidence(self, setup, make_evidence, now):
        project, activity = setup
        cache_current(project, activity, now)
        extra = make_evidence(project.id, step=SystematicStep.OBSERVATION)
        EvidenceRepository.set_manual_link(extra.id, activity.id, now)

        assert get_narrative(activity.id)["stale"] is True


class TestRefreshNarrative:
    def test_unknown_activity(self, temp_db):
        with pytest.raises(ActivityNotFoundError):
            refresh_narrative("no-such-activity")

    def test_queues_without_cache(self, setup, now):
        _, activity = setup
        response = refresh_narrative(activity.id, now=now)
        assert response["queued"] is True
        assert response["priority"] == PRIORITY_DEFAULT
        assert NarrativeJobQueue.get(activity.id) is not None

    def test_regen_cooldown(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now - timedelta(hours=2))

        response = refresh_narrative(activity.id, now=now)

        assert response == {"queued": False, "blocked": "regen_cooldown", "hours_remaining": 4}
        assert NarrativeJobQueue.count() == 0

    def test_after_cooldown(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now - timedelta(hours=7))
        assert refresh_narrative(activity.id, now=now)["queued"] is True

    def test_force_bypasses_cooldown_with_priority(self, setup, now):
        project, activity = setup
        cache_current(project, activity, now - timedelta(minutes=5))

        response = refresh_narrative(activity.id, force=True, now=now)

        assert response["queued"] is True
        assert response["priority"] == PRIORITY_USER
        assert NarrativeJobQueue.get(activity.id).priority == PRIORITY_USER

    def test_budget_blocks_unforced_refresh(self, setup, make_activity, now):
        project, activity = setup
        for n in range(9):
            other = make_activity(project.id, name=f"Other {n}")
            ActivityNarrativeRepository.upsert(
                other.id, "t", Confidence.LOW, [], "h", snippet_count=4, generated_at=now - timedelta(hours=3)
            )

        response = refresh_narrative(activity.id, now=now)

        assert response["queued"] is False
        assert response["blocked"] == "daily_budget_exceeded"
        assert refresh_narrative(activity.id, force=True, now=now)["queued"] is True
