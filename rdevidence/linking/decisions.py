"""
Module: decisions
Purpose: Turn classifier proposals into one tagged decision per candidate.

Stage 3 of the linking pipeline:
    1. Conflicts: an evidence id proposed for two or more distinct activities
       is dropped entirely for this round.
    2. Dual gate: a single proposed activity is accepted only if the rule
       score reaches the threshold (inclusive) AND the classifier said "high".

Every candidate gets exactly one LinkDecision; candidates the classifier
did not mention, or mapped to no activity, are NO_MATCH.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence

from rdevidence.config import LINK_RULE_SCORE_THRESHOLD
from rdevidence.evidence.models import Confidence
from rdevidence.linking.terms import jaccard_similarity
from rdevidence.linking.types import LinkCandidate, LinkDecision, LinkProposal
from rdevidence.observability.logging import get_logger

logger = get_logger(__name__)

Scorer = Callable[[Iterable[str], Iterable[str]], float]


def _group_by_evidence(
    proposals: Sequence[LinkProposal],
    candidate_ids: set[str],
    activity_ids: set[str],
) -> dict[str, list[LinkProposal]]:
    grouped: dict[str, list[LinkProposal]] = {}
    for proposal in proposals:
        if proposal.evidence_id not in candidate_ids:
            logger.warning("Classifier proposed unknown evidence id %s", proposal.evidence_id)
            continue
        if proposal.activity_id is None or proposal.activity_id not in activity_ids:
            continue
        grouped.setdefault(proposal.evidence_id, []).append(proposal)
    return grouped


def decide(
    candidate: LinkCandidate,
    proposals: Sequence[LinkProposal],
    activity_terms: Mapping[str, Sequence[str]],
    threshold: float = LINK_RULE_SCORE_THRESHOLD,
    scorer: Scorer = jaccard_similarity,
) -> LinkDecision:
    """Decide one candidate given its non-null proposals."""
    if not proposals:
        return LinkDecision.no_match(candidate.id)

    targets = tuple(dict.fromkeys(p.activity_id for p in proposals))
    if len(targets) > 1:
        logger.info("Conflicting proposals for %s: %s", candidate.id, targets)
        return LinkDecision.rejected_by_conflict(candidate.id, targets)

    activity_id = targets[0]
    # Repeated proposals for the same activity: prefer a high-confidence one
    proposal = next((p for p in proposals if p.confidence == Confidence.HIGH), proposals[0])

    rule_score = scorer(candidate.top_terms, activity_terms[activity_id])
    if rule_score < threshold:
        return LinkDecision.rejected_by_rule(candidate.id, activity_id, rule_score)
    if proposal.confidence != Confidence.HIGH:
        return LinkDecision.rejected_by_confidence(candidate.id, activity_id, rule_score)
    return LinkDecision.accepted(candidate.id, activity_id, proposal.reason, rule_score)


def evaluate_proposals(
    proposals: Sequence[LinkProposal],
    candidates: Sequence[LinkCandidate],
    activity_terms: Mapping[str, Sequence[str]],
    threshold: float = LINK_RULE_SCORE_THRESHOLD,
    scorer: Scorer = jaccard_similarity,
) -> list[LinkDecision]:
    """
    Decide every candidate in the batch.

    Args:
        proposals: Classifier output (activity names already resolved to ids)
        candidates: The batch that was sent to the classifier
        activity_terms: Top terms per activity id
        threshold: Minimum rule score (inclusive)
        scorer: Rule score function, Jaccard similarity by default

    Returns:
        One decision per candidate, in candidate order
    """
    grouped = _group_by_evidence(proposals, {c.id for c in candidates}, set(activity_terms))
    return [
        decide(candidate, grouped.get(candidate.id, []), activity_terms, threshold, scorer)
        for candidate in candidates
    ]
