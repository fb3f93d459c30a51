"""
Linking diagnostics - explains why evidence does or does not auto-link.

Read-only: evaluates every gate for the newest evidence items without
short-circuiting, so an operator sees all blocking reasons at once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rdevidence.config import (
    LINK_DIAGNOSTICS_LIMIT,
    LINK_MIN_CONTENT_LENGTH,
    LINK_RECENCY_WINDOW_DAYS,
    LINK_RETRY_COOLDOWN_HOURS,
    LINK_RULE_SCORE_THRESHOLD,
    LINK_SUCCESS_COOLDOWN_HOURS,
    LINK_TOP_TERMS,
)
from rdevidence.evidence.models import EvidenceItem
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository, ProjectRepository
from rdevidence.infrastructure.budget import check_linking_budget
from rdevidence.linking.gatekeeper import evaluate_cooldown
from rdevidence.linking.prefilter import PrefilterEngine
from rdevidence.linking.terms import extract_top_terms, jaccard_similarity
from rdevidence.utils.text import sanitize_content
from rdevidence.utils.timestamps import days_between, utc_now

NO_ACTIVITIES_ISSUE = "NO_ACTIVITIES: Project has no core activities. Add at least one activity first."


class ProjectNotFoundError(LookupError):
    """Raised when diagnostics are requested for a missing or deleted project."""


def _analyze(item: EvidenceItem, prefilter: PrefilterEngine, now: datetime) -> dict[str, Any]:
    analysis: dict[str, Any] = {
        "id": item.id,
        "created_at": item.created_at.isoformat(),
        "step": item.systematic_step.value,
        "content_preview": (item.content or "")[:100],
        "current_link": "LINKED" if item.linked_activity_id else "UNLINKED",
        "link_source": item.link_source.value if item.link_source else None,
        "link_reason": item.link_reason,
        "checks": {},
        "blocking_reasons": [],
        "activity_scores": [],
    }
    checks = analysis["checks"]
    blocking = analysis["blocking_reasons"]

    if item.is_manually_linked:
        checks["manual_link"] = "SKIP"
        blocking.append("Manually linked - will never auto-link")

    checks["soft_deleted"] = {"value": item.soft_deleted, "pass": not item.soft_deleted}
    if item.soft_deleted:
        blocking.append("Soft deleted")

    sanitized = sanitize_content(item.content)
    length_ok = len(sanitized) >= LINK_MIN_CONTENT_LENGTH
    checks["content_length"] = {
        "value": len(sanitized),
        "min_required": LINK_MIN_CONTENT_LENGTH,
        "pass": length_ok,
    }
    if not length_ok:
        blocking.append(f"Content too short: {len(sanitized)} < {LINK_MIN_CONTENT_LENGTH} chars")

    age_days = days_between(item.created_at, now)
    recency_ok = age_days <= LINK_RECENCY_WINDOW_DAYS or prefilter.backfill_open
    checks["recency_window"] = {
        "evidence_age_days": round(age_days),
        "window_days": LINK_RECENCY_WINDOW_DAYS,
        "has_recent_activity": prefilter.backfill_open,
        "pass": recency_ok,
    }
    if not recency_ok:
        blocking.append(
            f"Too old: {round(age_days)} days > {LINK_RECENCY_WINDOW_DAYS} days "
            "(no recent activities for backfill)"
        )

    cooldown = evaluate_cooldown(item, now)
    if cooldown.hours_since_link is not None:
        passed = cooldown.hours_since_link >= LINK_SUCCESS_COOLDOWN_HOURS
        checks["link_cooldown"] = {
            "hours_since_update": round(cooldown.hours_since_link, 1),
            "cooldown_hours": LINK_SUCCESS_COOLDOWN_HOURS,
            "pass": passed,
        }
        if not passed:
            blocking.append(
                f"Link cooldown: {round(cooldown.hours_since_link)}h < {LINK_SUCCESS_COOLDOWN_HOURS}h"
            )
    if cooldown.hours_since_attempt is not None:
        passed = cooldown.hours_since_attempt >= LINK_RETRY_COOLDOWN_HOURS
        checks["attempt_cooldown"] = {
            "hours_since_attempt": round(cooldown.hours_since_attempt, 1),
            "cooldown_hours": LINK_RETRY_COOLDOWN_HOURS,
            "pass": passed,
        }
        if not passed:
            blocking.append(
                f"Attempt cooldown: {round(cooldown.hours_since_attempt)}h < {LINK_RETRY_COOLDOWN_HOURS}h"
            )
    checks["eligibility"] = cooldown.eligibility.value

    current_hash = item.current_content_hash()
    checks["content_hash"] = {
        "current": current_hash[:16] if current_hash else None,
        "stored": item.content_hash[:16] if item.content_hash else None,
        "changed": (current_hash != item.content_hash) if item.content_hash else "never_hashed",
    }

    if length_ok:
        terms = extract_top_terms(sanitized, LINK_TOP_TERMS)
        analysis["evidence_terms"] = terms
        scores = []
        for entry in prefilter.activity_terms:
            score = jaccard_similarity(terms, entry.terms)
            scores.append(
                {
                    "activity_id": entry.activity.id,
                    "activity_name": entry.activity.name,
                    "activity_terms": entry.terms,
                    "jaccard_score": round(score, 3),
                    "passes_threshold": score >= LINK_RULE_SCORE_THRESHOLD,
                    "threshold": LINK_RULE_SCORE_THRESHOLD,
                }
            )
        has_overlap = any(s["jaccard_score"] > 0 for s in scores)
        checks["keyword_overlap"] = {"has_any_overlap": has_overlap, "pass": has_overlap}
        if not has_overlap:
            blocking.append("No keyword overlap with any activity")
        analysis["activity_scores"] = sorted(scores, key=lambda s: s["jaccard_score"], reverse=True)

    return analysis


def build_diagnostics(
    project_id: str,
    evidence_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Build the diagnostics report for a project.

    Raises:
        ProjectNotFoundError: If the project does not exist or is deleted
    """
    now = now or utc_now()
    project = ProjectRepository.get_by_id(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)

    activities = ActivityRepository.list_for_project(project_id)
    budget = check_linking_budget(project_id, now=now)

    report: dict[str, Any] = {
        "project": {
            "id": project.id,
            "name": project.name,
            "hypothesis": project.current_hypothesis or "Not set",
            "activities_count": len(activities),
        },
        "budget": {
            "attempted_today": budget.used,
            "daily_limit": budget.limit,
            "within_budget": budget.is_allowed,
        },
        "evidence": [],
        "blocking_issues": [],
    }

    if not activities:
        report["blocking_issues"].append(NO_ACTIVITIES_ISSUE)
        report["summary"] = {**EvidenceRepository.link_summary(project_id), "blocking_issues": report["blocking_issues"]}
        return report

    items = EvidenceRepository.list_for_project(
        project_id,
        evidence_ids=[evidence_id] if evidence_id else None,
        limit=LINK_DIAGNOSTICS_LIMIT,
        include_deleted=False,
    )
    prefilter = PrefilterEngine(activities, now)
    report["evidence"] = [_analyze(item, prefilter, now) for item in items]
    report["summary"] = {**EvidenceRepository.link_summary(project_id), "blocking_issues": report["blocking_issues"]}
    return report
