"""Unit tests for narrative input hashing and staleness"""

from __future__ import annotations

from rdevidence.evidence.models import CoreActivity, EvidenceItem
from rdevidence.narratives.models import ActivityNarrative
from rdevidence.narratives.staleness import check_staleness, compute_input_hash

ACTIVITY = CoreActivity(id="act-1", project_id="proj-1", name="Adaptive cache eviction", uncertainty="Burst latency")
EVIDENCE = [
    EvidenceItem(id="ev-2", project_id="proj-1", content="second"),
    EvidenceItem(id="ev-1", project_id="proj-1", content="first"),
]


def test_hash_is_deterministic_and_order_independent():
    assert compute_input_hash("H", ACTIVITY, EVIDENCE) == compute_input_hash("H", ACTIVITY, list(reversed(EVIDENCE)))


def test_uncertainty_change_changes_hash():
    edited = ACTIVITY.model_copy(update={"uncertainty": "Burst latency and memory overhead"})
    assert compute_input_hash("H", ACTIVITY, EVIDENCE) != compute_input_hash("H", edited, EVIDENCE)


def test_hypothesis_only_first_200_chars_count():
    base = "h" * 200
    assert compute_input_hash(base, ACTIVITY, EVIDENCE) == compute_input_hash(base + "tail", ACTIVITY, EVIDENCE)


def test_new_evidence_changes_hash():
    extra = EVIDENCE + [EvidenceItem(id="ev-3", project_id="proj-1", content="third")]
    assert compute_input_hash("H", ACTIVITY, EVIDENCE) != compute_input_hash("H", ACTIVITY, extra)


def test_staleness_check():
    current = compute_input_hash("H", ACTIVITY, EVIDENCE)
    fresh = ActivityNarrative(activity_id="act-1", text="t", input_hash=current)
    old = ActivityNarrative(activity_id="act-1", text="t", input_hash="0" * 64)

    assert not check_staleness(fresh, "H", ACTIVITY, EVIDENCE).is_stale
    assert check_staleness(old, "H", ACTIVITY, EVIDENCE).is_stale
    assert not check_staleness(None, "H", ACTIVITY, EVIDENCE).is_stale
