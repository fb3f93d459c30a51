"""
Module: types
Purpose: Shared result types for the linking pipeline.

Kept in a leaf module so prefilter, classifier, decisions, engine and
diagnostics can all import them without cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from rdevidence.evidence.models import Confidence, CoreActivity, EvidenceItem

# ---------------------------------------------------------------------------
# Prefilter (stage 1)
# ---------------------------------------------------------------------------


class PrefilterReason(str, Enum):
    MANUAL_LINK = "manual_link"
    SOFT_DELETED = "soft_deleted"
    CONTENT_TOO_SHORT = "content_too_short"
    OUTSIDE_RECENCY_WINDOW = "outside_recency_window"
    NO_KEYWORD_OVERLAP = "no_keyword_overlap"


@dataclass
class PrefilterResult:
    passed: bool
    reason: PrefilterReason | None = None
    top_terms: list[str] = field(default_factory=list)

    @classmethod
    def rejected(cls, reason: PrefilterReason) -> PrefilterResult:
        return cls(passed=False, reason=reason)

    @classmethod
    def accepted(cls, top_terms: list[str]) -> PrefilterResult:
        return cls(passed=True, top_terms=top_terms)


@dataclass
class LinkCandidate:
    """Evidence that passed every gate, with the terms computed while gating."""

    evidence: EvidenceItem
    top_terms: list[str]
    snippet: str
    content_hash: str | None

    @property
    def id(self) -> str:
        return self.evidence.id


# ---------------------------------------------------------------------------
# Classifier proposals (stage 2)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinkProposal:
    """One entry of the classifier's answer, with the activity name resolved to an id."""

    evidence_id: str
    activity_id: str | None
    reason: str | None
    confidence: Confidence


# ---------------------------------------------------------------------------
# Decisions (stage 3)
# ---------------------------------------------------------------------------


class DecisionKind(str, Enum):
    ACCEPTED = "accepted"
    NO_MATCH = "no_match"
    REJECTED_BY_RULE = "rejected_by_rule"
    REJECTED_BY_CONFIDENCE = "rejected_by_confidence"
    REJECTED_BY_CONFLICT = "rejected_by_conflict"


@dataclass(frozen=True)
class LinkDecision:
    """Outcome for one evidence item in one linking round."""

    kind: DecisionKind
    evidence_id: str
    activity_id: str | None = None
    reason: str | None = None
    rule_score: float | None = None
    conflicting_activity_ids: tuple[str, ...] = ()

    @property
    def is_accepted(self) -> bool:
        return self.kind == DecisionKind.ACCEPTED

    @classmethod
    def accepted(cls, evidence_id: str, activity_id: str, reason: str | None, rule_score: float) -> LinkDecision:
        return cls(DecisionKind.ACCEPTED, evidence_id, activity_id, reason, rule_score)

    @classmethod
    def no_match(cls, evidence_id: str) -> LinkDecision:
        return cls(DecisionKind.NO_MATCH, evidence_id)

    @classmethod
    def rejected_by_rule(cls, evidence_id: str, activity_id: str, rule_score: float) -> LinkDecision:
        return cls(DecisionKind.REJECTED_BY_RULE, evidence_id, activity_id, rule_score=rule_score)

    @classmethod
    def rejected_by_confidence(cls, evidence_id: str, activity_id: str, rule_score: float) -> LinkDecision:
        return cls(DecisionKind.REJECTED_BY_CONFIDENCE, evidence_id, activity_id, rule_score=rule_score)

    @classmethod
    def rejected_by_conflict(cls, evidence_id: str, activity_ids: tuple[str, ...]) -> LinkDecision:
        return cls(DecisionKind.REJECTED_BY_CONFLICT, evidence_id, conflicting_activity_ids=activity_ids)


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


class RunReason(str, Enum):
    DAILY_BUDGET_EXCEEDED = "daily_budget_exceeded"
    NO_ACTIVITIES = "no_activities"
    NO_EVIDENCE = "no_evidence"
    ALL_CACHED_OR_COOLDOWN = "all_cached_or_cooldown"
    NONE_PASSED_PREFILTER = "none_passed_prefilter"
    PROJECT_NOT_FOUND = "project_not_found"
    CLASSIFIER_NOT_CONFIGURED = "classifier_not_configured"
    CLASSIFIER_FAILED = "classifier_failed"


@dataclass
class LinkRunResult:
    """Summary of one linking invocation for one project."""

    project_id: str
    ok: bool = True
    linked: int = 0
    processed: int = 0
    proposals: int = 0
    final_links: int = 0
    conflicts: int = 0
    rejected_by_rule: int = 0
    rejected_by_confidence: int = 0
    failed: int = 0
    skipped: int = 0
    reason: RunReason | None = None
    prefilter_rejections: dict[str, int] = field(default_factory=dict)
    decisions: list[LinkDecision] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def early_exit(cls, project_id: str, reason: RunReason, ok: bool = True) -> LinkRunResult:
        return cls(project_id=project_id, ok=ok, reason=reason)

    @property
    def is_config_error(self) -> bool:
        return self.reason == RunReason.CLASSIFIER_NOT_CONFIGURED

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "project_id": self.project_id,
            "linked": self.linked,
            "processed": self.processed,
            "proposals": self.proposals,
            "final_links": self.final_links,
            "conflicts": self.conflicts,
            "rejected_by_rule": self.rejected_by_rule,
            "rejected_by_confidence": self.rejected_by_confidence,
            "failed": self.failed,
            "skipped": self.skipped,
            "reason": self.reason.value if self.reason else None,
            "prefilter_rejections": dict(self.prefilter_rejections),
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


@dataclass
class ActivityTerms:
    """Activity with its top terms computed once per run."""

    activity: CoreActivity
    terms: list[str]
