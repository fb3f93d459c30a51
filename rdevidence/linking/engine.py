"""
Linking Decision Engine - orchestrates one auto-link run for a project.

Pipeline (per project):
    budget check -> load project/activities/evidence -> cooldown policy
    -> prefilter -> newest-first batch capped by run and daily budget
    -> classifier -> decisions (conflicts, dual gate) -> one transaction
    -> EvidenceSetChanged events for every affected activity

Outcomes that are not failures (budget spent, nothing due, nothing passed)
come back as RunReason values on an ok result. A classifier failure bumps
link_attempted_at for the whole batch and persists no links.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from rdevidence.config import LINK_EVIDENCE_SCAN_LIMIT, LINK_MAX_ITEMS_PER_RUN, LINK_SNIPPET_MAX_CHARS
from rdevidence.events import EventBus, EvidenceSetChanged, get_event_bus
from rdevidence.evidence.models import EvidenceItem
from rdevidence.evidence.repository import (
    ActivityRepository,
    AttemptWrite,
    AutoLinkWrite,
    EvidenceRepository,
    ProjectRepository,
)
from rdevidence.infrastructure.budget import check_linking_budget
from rdevidence.linking.classifier import EvidenceLinkClassifier, LinkClassifierError
from rdevidence.linking.decisions import evaluate_proposals
from rdevidence.linking.gatekeeper import evaluate_cooldown
from rdevidence.linking.prefilter import PrefilterEngine
from rdevidence.linking.types import DecisionKind, LinkCandidate, LinkDecision, LinkRunResult, RunReason
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event, time_block
from rdevidence.utils.text import sanitize_content, truncate_at_word
from rdevidence.utils.timestamps import utc_now

logger = get_logger(__name__)


class LinkingEngine:
    """
    Auto-links evidence to core activities for one project per run() call.

    Dependencies are injectable for tests; defaults use Gemini and the
    process-wide event bus.
    """

    def __init__(
        self,
        classifier: EvidenceLinkClassifier | None = None,
        event_bus: EventBus | None = None,
        max_items_per_run: int = LINK_MAX_ITEMS_PER_RUN,
    ):
        self.classifier = classifier or EvidenceLinkClassifier()
        self._event_bus = event_bus
        self.max_items_per_run = max_items_per_run

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus or get_event_bus()

    def run(
        self,
        project_id: str,
        evidence_ids: Sequence[str] | None = None,
        now: datetime | None = None,
    ) -> LinkRunResult:
        """
        Run the linking pipeline for one project.

        Args:
            project_id: Project to process
            evidence_ids: Restrict the run to these evidence ids (ingestion trigger)
            now: Clock override for tests

        Returns:
            LinkRunResult summary; never raises for classifier failures
        """
        start = time.perf_counter()
        now = now or utc_now()

        with time_block("linking.run.latency"):
            result = self._run(project_id, evidence_ids, now)

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        counter("linking.runs")
        log_event(
            "linking.run.completed",
            project_id=project_id,
            ok=result.ok,
            reason=result.reason.value if result.reason else None,
            linked=result.linked,
            processed=result.processed,
            conflicts=result.conflicts,
            failed=result.failed,
            duration_ms=result.duration_ms,
        )
        return result

    def _run(self, project_id: str, evidence_ids: Sequence[str] | None, now: datetime) -> LinkRunResult:
        if not self.classifier.is_configured():
            counter("linking.config_error")
            logger.error("Link classifier not configured (no Gemini credentials)")
            result = LinkRunResult.early_exit(project_id, RunReason.CLASSIFIER_NOT_CONFIGURED, ok=False)
            result.errors.append({"error": "LLM credentials not configured"})
            return result

        budget = check_linking_budget(project_id, now=now)
        if not budget.is_allowed:
            return LinkRunResult.early_exit(project_id, RunReason.DAILY_BUDGET_EXCEEDED)

        project = ProjectRepository.get_by_id(project_id)
        if project is None:
            result = LinkRunResult.early_exit(project_id, RunReason.PROJECT_NOT_FOUND, ok=False)
            result.errors.append({"error": f"Project {project_id} not found"})
            return result

        activities = ActivityRepository.list_for_project(project_id)
        if not activities:
            return LinkRunResult.early_exit(project_id, RunReason.NO_ACTIVITIES)

        evidence = EvidenceRepository.list_for_project(
            project_id, evidence_ids=evidence_ids, limit=LINK_EVIDENCE_SCAN_LIMIT
        )
        if not evidence:
            return LinkRunResult.early_exit(project_id, RunReason.NO_EVIDENCE)

        due = [item for item in evidence if evaluate_cooldown(item, now).is_eligible]
        if not due:
            result = LinkRunResult.early_exit(project_id, RunReason.ALL_CACHED_OR_COOLDOWN)
            result.skipped = len(evidence)
            return result

        result = LinkRunResult(project_id=project_id, skipped=len(evidence) - len(due))
        prefilter = PrefilterEngine(activities, now)
        candidates = self._prefilter(prefilter, due, result)
        if not candidates:
            result.reason = RunReason.NONE_PASSED_PREFILTER
            return result

        batch = candidates[: min(self.max_items_per_run, budget.remaining)]
        result.processed = len(batch)
        logger.info("Processing %d/%d candidates for project %s", len(batch), len(candidates), project_id)

        try:
            proposals = self.classifier.classify(project, activities, batch)
        except LinkClassifierError as e:
            logger.error("Classifier failed for project %s: %s", project_id, e)
            EvidenceRepository.mark_attempted([c.id for c in batch], now)
            result.ok = False
            result.failed = len(batch)
            result.reason = RunReason.CLASSIFIER_FAILED
            result.errors.append({"error": str(e)})
            return result

        result.proposals = len(proposals)
        activity_terms = {a.activity.id: a.terms for a in prefilter.activity_terms}
        decisions = evaluate_proposals(proposals, batch, activity_terms)
        self._tally(decisions, result)

        by_id = {c.id: c for c in batch}
        links = [
            AutoLinkWrite(d.evidence_id, d.activity_id, d.reason, by_id[d.evidence_id].content_hash)
            for d in decisions
            if d.is_accepted
        ]
        attempts = [
            AttemptWrite(d.evidence_id, by_id[d.evidence_id].content_hash)
            for d in decisions
            if not d.is_accepted
        ]
        result.linked = EvidenceRepository.apply_link_outcomes(links, attempts, now)
        result.final_links = len(links)
        counter("linking.linked", result.linked)

        self._publish_changes(project_id, batch, decisions)
        return result

    def _prefilter(
        self,
        prefilter: PrefilterEngine,
        items: Sequence[EvidenceItem],
        result: LinkRunResult,
    ) -> list[LinkCandidate]:
        candidates: list[LinkCandidate] = []
        for item in items:
            sanitized = sanitize_content(item.content)
            check = prefilter.check(item, sanitized)
            if not check.passed:
                reason = check.reason.value
                result.prefilter_rejections[reason] = result.prefilter_rejections.get(reason, 0) + 1
                counter(f"linking.prefilter.rejected.{reason}")
                continue
            candidates.append(
                LinkCandidate(
                    evidence=item,
                    top_terms=check.top_terms,
                    snippet=truncate_at_word(sanitized, LINK_SNIPPET_MAX_CHARS),
                    content_hash=item.current_content_hash(),
                )
            )

        logger.info(
            "Prefilter: %d/%d passed. Rejected: %s", len(candidates), len(items), result.prefilter_rejections
        )
        return candidates

    @staticmethod
    def _tally(decisions: Sequence[LinkDecision], result: LinkRunResult) -> None:
        result.decisions = list(decisions)
        for decision in decisions:
            if decision.kind == DecisionKind.REJECTED_BY_CONFLICT:
                result.conflicts += 1
            elif decision.kind == DecisionKind.REJECTED_BY_RULE:
                result.rejected_by_rule += 1
            elif decision.kind == DecisionKind.REJECTED_BY_CONFIDENCE:
                result.rejected_by_confidence += 1
        if result.conflicts:
            counter("linking.conflicts", result.conflicts)
            logger.info("Removed %d conflicting links", result.conflicts)

    def _publish_changes(
        self,
        project_id: str,
        batch: Sequence[LinkCandidate],
        decisions: Sequence[LinkDecision],
    ) -> None:
        """Emit one EvidenceSetChanged per activity whose linked evidence changed."""
        by_id = {c.id: c for c in batch}
        changed: dict[str, str] = {}

        for decision in decisions:
            item = by_id[decision.evidence_id].evidence
            new_hash = by_id[decision.evidence_id].content_hash
            if decision.is_accepted:
                if item.linked_activity_id != decision.activity_id:
                    changed.setdefault(decision.activity_id, "auto_link")
                    if item.linked_activity_id:
                        changed.setdefault(item.linked_activity_id, "auto_relink")
                elif item.content_hash != new_hash:
                    changed.setdefault(decision.activity_id, "content_changed")
            elif item.linked_activity_id and item.content_hash != new_hash:
                changed.setdefault(item.linked_activity_id, "content_changed")

        for activity_id, cause in changed.items():
            self.event_bus.publish(EvidenceSetChanged(activity_id=activity_id, project_id=project_id, cause=cause))


def run_sweep(engine: LinkingEngine | None = None, now: datetime | None = None) -> dict[str, Any]:
    """
    Run the linking engine for every non-deleted project (scheduled trigger).

    Returns:
        Aggregate summary with one entry per project under "projects"
    """
    engine = engine or LinkingEngine()
    start = time.perf_counter()
    now = now or utc_now()

    summary: dict[str, Any] = {
        "ok": True,
        "linked": 0,
        "processed": 0,
        "failed": 0,
        "skipped": 0,
        "errors": [],
        "projects": [],
    }

    if not engine.classifier.is_configured():
        counter("linking.config_error")
        summary.update(ok=False, error="LLM credentials not configured", config_error=True)
        summary["duration_ms"] = int((time.perf_counter() - start) * 1000)
        return summary

    for project in ProjectRepository.list_active():
        try:
            result = engine.run(project.id, now=now)
        except Exception as e:
            counter("linking.sweep.project_error")
            logger.error("Linking sweep failed for project %s: %s", project.id, e)
            summary["failed"] += 1
            summary["errors"].append({"project_id": project.id, "error": str(e)})
            continue

        summary["linked"] += result.linked
        summary["processed"] += result.processed
        summary["failed"] += result.failed
        summary["skipped"] += result.skipped
        summary["errors"].extend({"project_id": project.id, **err} for err in result.errors)
        summary["projects"].append(result.to_dict())

    summary["duration_ms"] = int((time.perf_counter() - start) * 1000)
    log_event(
        "linking.sweep.completed",
        projects=len(summary["projects"]),
        linked=summary["linked"],
        failed=summary["failed"],
        duration_ms=summary["duration_ms"],
    )
    return summary
