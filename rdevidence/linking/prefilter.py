"""
Module: prefilter
Purpose: Deterministic gates that reject evidence before any paid classifier call.

Gates run in order and stop at the first failure:
    1. manual link     - a person's decision is never touched
    2. soft deleted
    3. content length  - sanitized body shorter than LINK_MIN_CONTENT_LENGTH
    4. recency window  - older than LINK_RECENCY_WINDOW_DAYS, unless the
                         project has an activity younger than
                         LINK_ACTIVITY_BACKFILL_DAYS
    5. keyword overlap - zero rule score against every activity

Passing items carry their top terms forward so the decision stage does not
recompute them.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from rdevidence.config import (
    LINK_ACTIVITY_BACKFILL_DAYS,
    LINK_MIN_CONTENT_LENGTH,
    LINK_RECENCY_WINDOW_DAYS,
    LINK_TOP_TERMS,
)
from rdevidence.evidence.models import CoreActivity, EvidenceItem
from rdevidence.linking.terms import extract_top_terms, jaccard_similarity
from rdevidence.linking.types import ActivityTerms, PrefilterReason, PrefilterResult
from rdevidence.utils.text import sanitize_content
from rdevidence.utils.timestamps import days_between


def build_activity_terms(activities: Sequence[CoreActivity]) -> list[ActivityTerms]:
    """Top terms for each activity's name + uncertainty, computed once per run."""
    return [
        ActivityTerms(activity=activity, terms=extract_top_terms(activity.match_text, LINK_TOP_TERMS))
        for activity in activities
    ]


def has_recent_activity(activities: Sequence[CoreActivity], now: datetime) -> bool:
    return any(days_between(a.created_at, now) < LINK_ACTIVITY_BACKFILL_DAYS for a in activities)


class PrefilterEngine:
    """
    Runs the gates for one project's evidence.

    Activity terms and the backfill flag depend only on the activity list, so
    they are computed once in the constructor.
    """

    def __init__(self, activities: Sequence[CoreActivity], now: datetime):
        self.now = now
        self.activity_terms = build_activity_terms(activities)
        self.backfill_open = has_recent_activity(activities, now)

    def check(self, item: EvidenceItem, sanitized: str | None = None) -> PrefilterResult:
        if item.is_manually_linked:
            return PrefilterResult.rejected(PrefilterReason.MANUAL_LINK)

        if item.soft_deleted:
            return PrefilterResult.rejected(PrefilterReason.SOFT_DELETED)

        if sanitized is None:
            sanitized = sanitize_content(item.content)
        if len(sanitized) < LINK_MIN_CONTENT_LENGTH:
            return PrefilterResult.rejected(PrefilterReason.CONTENT_TOO_SHORT)

        if days_between(item.created_at, self.now) > LINK_RECENCY_WINDOW_DAYS and not self.backfill_open:
            return PrefilterResult.rejected(PrefilterReason.OUTSIDE_RECENCY_WINDOW)

        terms = extract_top_terms(sanitized, LINK_TOP_TERMS)
        if not any(jaccard_similarity(terms, a.terms) > 0 for a in self.activity_terms):
            return PrefilterResult.rejected(PrefilterReason.NO_KEYWORD_OVERLAP)

        return PrefilterResult.accepted(terms)

    def scores(self, terms: Sequence[str]) -> dict[str, float]:
        """Rule score of a term list against every activity, keyed by activity id."""
        return {a.activity.id: jaccard_similarity(terms, a.terms) for a in self.activity_terms}
