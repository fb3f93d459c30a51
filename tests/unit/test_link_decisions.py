"""Unit tests for link decisions (dual gate and conflict handling)

Tests cover:
- Rule score boundary is inclusive (0.09 rejected, 0.10 accepted)
- Low classifier confidence rejects even a strong rule score
- Conflicting proposals for one evidence id are dropped
- Repeated proposals for the same activity are not a conflict
- Unmentioned, null and unknown proposals are no-match
"""

from __future__ import annotations

import pytest

from rdevidence.evidence.models import Confidence, EvidenceItem
from rdevidence.linking.decisions import evaluate_proposals
from rdevidence.linking.types import DecisionKind, LinkCandidate, LinkProposal

ACTIVITY_TERMS = {"act-a": ["cache", "eviction"], "act-b": ["payroll", "export"]}


def candidate(evidence_id: str = "ev-1") -> LinkCandidate:
    return LinkCandidate(
        evidence=EvidenceItem(id=evidence_id, project_id="proj-1", content="cache eviction notes"),
        top_terms=["cache", "eviction", "notes"],
        snippet="cache eviction notes",
        content_hash="abc",
    )


def proposal(activity_id: str | None, confidence: Confidence = Confidence.HIGH, evidence_id: str = "ev-1"):
    return LinkProposal(evidence_id=evidence_id, activity_id=activity_id, reason="keyword match", confidence=confidence)


def fixed_score(value: float):
    return lambda _evidence_terms, _activity_terms: value


@pytest.mark.parametrize(
    ("score", "confidence", "expected"),
    [
        (0.09, Confidence.HIGH, DecisionKind.REJECTED_BY_RULE),
        (0.10, Confidence.LOW, DecisionKind.REJECTED_BY_CONFIDENCE),
        (0.10, Confidence.HIGH, DecisionKind.ACCEPTED),
        (0.50, Confidence.HIGH, DecisionKind.ACCEPTED),
    ],
)
def test_dual_gate(score, confidence, expected):
    """Test that both rule score >= 0.10 and high confidence are required"""
    [decision] = evaluate_proposals(
        [proposal("act-a", confidence)], [candidate()], ACTIVITY_TERMS, scorer=fixed_score(score)
    )
    assert decision.kind == expected
    assert decision.rule_score == score


def test_accepted_decision_carries_reason_and_activity():
    """Test that accepted decisions keep the classifier's reason"""
    [decision] = evaluate_proposals([proposal("act-a")], [candidate()], ACTIVITY_TERMS)
    assert decision.is_accepted
    assert decision.activity_id == "act-a"
    assert decision.reason == "keyword match"


def test_conflicting_proposals_drop_link():
    """Test that one evidence id proposed for two activities is not linked"""
    [decision] = evaluate_proposals(
        [proposal("act-a"), proposal("act-b")], [candidate()], ACTIVITY_TERMS, scorer=fixed_score(1.0)
    )
    assert decision.kind == DecisionKind.REJECTED_BY_CONFLICT
    assert decision.activity_id is None
    assert decision.conflicting_activity_ids == ("act-a", "act-b")


def test_conflict_checked_before_gates():
    """Test that a conflict wins even when one side would fail the gates"""
    [decision] = evaluate_proposals(
        [proposal("act-a"), proposal("act-b", Confidence.LOW)],
        [candidate()],
        ACTIVITY_TERMS,
    )
    assert decision.kind == DecisionKind.REJECTED_BY_CONFLICT


def test_duplicate_proposal_same_activity_is_not_conflict():
    """Test that repeating the same activity is deduplicated"""
    [decision] = evaluate_proposals(
        [proposal("act-a", Confidence.LOW), proposal("act-a", Confidence.HIGH)],
        [candidate()],
        ACTIVITY_TERMS,
    )
    assert decision.kind == DecisionKind.ACCEPTED


def test_null_proposal_is_no_match():
    """Test that a null activity means no link"""
    [decision] = evaluate_proposals([proposal(None)], [candidate()], ACTIVITY_TERMS)
    assert decision.kind == DecisionKind.NO_MATCH


def test_null_plus_activity_is_not_conflict():
    """Test that a null proposal alongside a real one does not count as a conflict"""
    [decision] = evaluate_proposals([proposal(None), proposal("act-a")], [candidate()], ACTIVITY_TERMS)
    assert decision.kind == DecisionKind.ACCEPTED


def test_unmentioned_candidates_and_unknown_ids():
    """Test that every candidate gets a decision and unknown ids are ignored"""
    decisions = evaluate_proposals(
        [proposal("act-a", evidence_id="ev-unknown"), proposal("act-a", evidence_id="ev-2")],
        [candidate("ev-1"), candidate("ev-2")],
        ACTIVITY_TERMS,
    )
    assert [d.evidence_id for d in decisions] == ["ev-1", "ev-2"]
    assert decisions[0].kind == DecisionKind.NO_MATCH
    assert decisions[1].kind == DecisionKind.ACCEPTED


def test_real_jaccard_below_threshold_rejected():
    """Test the default scorer against an activity with no shared terms"""
    [decision] = evaluate_proposals([proposal("act-b")], [candidate()], ACTIVITY_TERMS)
    assert decision.kind == DecisionKind.REJECTED_BY_RULE
    assert decision.rule_score == 0.0
