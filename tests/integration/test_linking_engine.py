"""Integration tests for the linking engine against a real SQLite database

Tests cover:
- Accepted links persisted with source, reason and content hash
- Manual links are never sent or modified
- Daily budget (at cap, one below cap)
- Conflicting proposals leave evidence unlinked
- Classifier failure bumps attempts and persists nothing
- Missing credentials have no side effects
- Linking publishes EvidenceSetChanged and enqueues a narrative job
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from rdevidence.events import EventBus, EvidenceSetChanged
from rdevidence.evidence.models import LinkSource
from rdevidence.evidence.repository import EvidenceRepository
from rdevidence.linking.classifier import EvidenceLinkClassifier
from rdevidence.linking.engine import LinkingEngine, run_sweep
from rdevidence.linking.types import RunReason
from rdevidence.narratives.queue import NarrativeJobQueue, subscribe_narrative_queue
from rdevidence.observability.telemetry import get_counter

ACTIVITY_NAME = "Adaptive cache eviction"


@pytest.fixture
def bus():
    bus = EventBus()
    subscribe_narrative_queue(bus)
    return bus


@pytest.fixture
def engine_for(bus):
    def _make(llm) -> LinkingEngine:
        return LinkingEngine(classifier=EvidenceLinkClassifier(llm_call=llm), event_bus=bus)

    return _make


@pytest.fixture
def project(make_project):
    return make_project()


@pytest.fixture
def activity(project, make_activity):
    return make_activity(project.id)


def test_accepted_link_persisted(project, activity, make_evidence, engine_for, fake_llm, link_response, now):
    evidence = make_evidence(project.id)
    llm = fake_llm(link_response((evidence.id, ACTIVITY_NAME, "high")))

    result = engine_for(llm).run(project.id, now=now)

    assert result.ok
    assert result.linked == 1
    assert result.processed == 1
    stored = EvidenceRepository.get_by_id(evidence.id)
    assert stored.linked_activity_id == activity.id
    assert stored.link_source == LinkSource.AUTO
    assert stored.link_reason == "matches"
    assert stored.content_hash == evidence.current_content_hash()
    assert stored.link_attempted_at is not None


def test_low_confidence_records_attempt_only(project, activity, make_evidence, engine_for, fake_llm, link_response, now):
    evidence = make_evidence(project.id)
    llm = fake_llm(link_response((evidence.id, ACTIVITY_NAME, "low")))

    result = engine_for(llm).run(project.id, now=now)

    assert result.linked == 0
    assert result.rejected_by_confidence == 1
    stored = EvidenceRepository.get_by_id(evidence.id)
    assert stored.linked_activity_id is None
    assert stored.link_attempted_at is not None
    assert stored.content_hash == evidence.current_content_hash()


def test_rule_gate_rejects_unrelated_activity(
    project, activity, make_activity, make_evidence, engine_for, fake_llm, link_response, now
):
    make_activity(project.id, name="Payroll export", uncertainty="Spreadsheet formatting rules for payroll")
    evidence = make_evidence(project.id)
    llm = fake_llm(link_response((evidence.id, "Payroll export", "high")))

    result = engine_for(llm).run(project.id, now=now)

    assert result.rejected_by_rule == 1
    assert EvidenceRepository.get_by_id(evidence.id).linked_activity_id is None


def test_manual_link_never_touched(project, activity, make_activity, make_evidence, engine_for, fake_llm, link_response, now):
    other = make_activity(project.id, name="Adaptive cache warmup", uncertainty="Whether warmup keeps eviction latency low")
    manual = make_evidence(project.id)
    EvidenceRepository.set_manual_link(manual.id, other.id, now - timedelta(days=3))
    llm = fake_llm(link_response((manual.id, ACTIVITY_NAME, "high")))

    result = engine_for(llm).run(project.id, now=now)

    assert llm.calls == 0
    assert result.reason == RunReason.ALL_CACHED_OR_COOLDOWN
    stored = EvidenceRepository.get_by_id(manual.id)
    assert stored.linked_activity_id == other.id
    assert stored.link_source == LinkSource.MANUAL
    assert stored.link_attempted_at is None


def test_budget_at_cap_processes_nothing(project, activity, make_evidence, engine_for, fake_llm, now):
    spent = [make_evidence(project.id).id for _ in range(100)]
    EvidenceRepository.mark_attempted(spent, now - timedelta(hours=2))
    make_evidence(project.id)
    llm = fake_llm("[]")

    result = engine_for(llm).run(project.id, now=now)

    assert result.ok
    assert result.reason == RunReason.DAILY_BUDGET_EXCEEDED
    assert result.processed == 0
    assert llm.calls == 0


def test_one_below_cap_sends_exactly_one(project, activity, make_evidence, engine_for, fake_llm, now):
    spent = [make_evidence(project.id).id for _ in range(99)]
    EvidenceRepository.mark_attempted(spent, now - timedelta(minutes=30))
    fresh = [make_evidence(project.id, created_at=now - timedelta(hours=n)).id for n in (1, 2, 3)]
    llm = fake_llm("[]")

    result = engine_for(llm).run(project.id, now=now)

    assert result.processed == 1
    assert llm.calls == 1
    assert fresh[0] in llm.prompts[0]
    assert fresh[1] not in llm.prompts[0]
    attempted = [e for e in fresh if EvidenceRepository.get_by_id(e).link_attempted_at is not None]
    assert attempted == [fresh[0]]


def test_attempts_outside_window_do_not_count(project, activity, make_evidence, engine_for, fake_llm, now):
    old = [make_evidence(project.id).id for _ in range(100)]
    EvidenceRepository.mark_attempted(old, now - timedelta(hours=25))
    llm = fake_llm("[]")

    result = engine_for(llm).run(project.id, now=now)

    assert result.reason != RunReason.DAILY_BUDGET_EXCEEDED
    assert result.processed == 25


def test_conflict_leaves_evidence_unlinked(
    project, activity, make_activity, make_evidence, engine_for, fake_llm, link_response, now
):
    make_activity(project.id, name="Adaptive cache warmup", uncertainty="Whether warmup keeps eviction latency low")
    evidence = make_evidence(project.id)
    llm = fake_llm(
        link_response(
            (evidence.id, ACTIVITY_NAME, "high"),
            (evidence.id, "Adaptive cache warmup", "high"),
        )
    )

    result = engine_for(llm).run(project.id, now=now)

    assert result.conflicts == 1
    assert result.linked == 0
    assert get_counter("linking.conflicts") == 1
    stored = EvidenceRepository.get_by_id(evidence.id)
    assert stored.linked_activity_id is None
    assert stored.link_attempted_at is not None


def test_classifier_failure_marks_attempted(project, activity, make_evidence, engine_for, fake_llm, now):
    evidence = make_evidence(project.id)
    llm = fake_llm(TimeoutError("deadline exceeded"))

    result = engine_for(llm).run(project.id, now=now)

    assert not result.ok
    assert result.reason == RunReason.CLASSIFIER_FAILED
    assert result.failed == 1
    stored = EvidenceRepository.get_by_id(evidence.id)
    assert stored.link_attempted_at == now
    assert stored.linked_activity_id is None
    assert stored.content_hash is None


def test_unparseable_response_is_failure(project, activity, make_evidence, engine_for, fake_llm, now):
    make_evidence(project.id)
    result = engine_for(fake_llm("I cannot help with that")).run(project.id, now=now)
    assert result.reason == RunReason.CLASSIFIER_FAILED


def test_missing_credentials_no_side_effects(project, activity, make_evidence, now):
    evidence = make_evidence(project.id)

    result = LinkingEngine(event_bus=EventBus()).run(project.id, now=now)

    assert not result.ok
    assert result.reason == RunReason.CLASSIFIER_NOT_CONFIGURED
    assert EvidenceRepository.get_by_id(evidence.id).link_attempted_at is None


def test_early_exits(make_project, make_activity, make_evidence, engine_for, fake_llm, now):
    llm = fake_llm("[]")
    engine = engine_for(llm)

    empty = make_project()
    assert engine.run(empty.id, now=now).reason == RunReason.NO_ACTIVITIES

    make_activity(empty.id)
    assert engine.run(empty.id, now=now).reason == RunReason.NO_EVIDENCE

    make_evidence(empty.id, content="Payroll spreadsheet formatting rules updated")
    result = engine.run(empty.id, now=now)
    assert result.reason == RunReason.NONE_PASSED_PREFILTER
    assert result.prefilter_rejections == {"no_keyword_overlap": 1}

    assert engine.run("missing-project", now=now).reason == RunReason.PROJECT_NOT_FOUND
    assert llm.calls == 0


def test_evidence_ids_restrict_run(project, activity, make_evidence, engine_for, fake_llm, now):
    first = make_evidence(project.id)
    second = make_evidence(project.id)
    llm = fake_llm("[]")

    engine_for(llm).run(project.id, evidence_ids=[second.id], now=now)

    assert second.id in llm.prompts[0]
    assert first.id not in llm.prompts[0]


def test_link_enqueues_narrative_job(project, activity, make_evidence, engine_for, fake_llm, link_response, now):
    evidence = make_evidence(project.id)
    llm = fake_llm(link_response((evidence.id, ACTIVITY_NAME, "high")))

    engine_for(llm).run(project.id, now=now)

    job = NarrativeJobQueue.get(activity.id)
    assert job is not None
    assert job.project_id == project.id


def test_no_event_when_nothing_changes(project, activity, make_evidence, fake_llm, now):
    make_evidence(project.id)
    received = []
    bus = EventBus()
    bus.subscribe(EvidenceSetChanged, received.append)
    engine = LinkingEngine(classifier=EvidenceLinkClassifier(llm_call=fake_llm("[]")), event_bus=bus)

    engine.run(project.id, now=now)

    assert received == []


def test_sweep_runs_every_project(make_project, make_activity, make_evidence, bus, fake_llm, now):
    projects = [make_project(), make_project()]
    for p in projects:
        make_activity(p.id)
        make_evidence(p.id)
    llm = fake_llm("[]")
    engine = LinkingEngine(classifier=EvidenceLinkClassifier(llm_call=llm), event_bus=bus)

    summary = run_sweep(engine, now=now)

    assert summary["ok"]
    assert summary["processed"] == 2
    assert len(summary["projects"]) == 2
    assert llm.calls == 2


def test_sweep_without_credentials(temp_db):
    summary = run_sweep(LinkingEngine(event_bus=EventBus()))
    assert summary["config_error"] is True
    assert summary["ok"] is False
