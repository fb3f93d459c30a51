"""
Input hash for cached narratives.

The hash covers the project hypothesis (first 200 chars), the activity's
name and uncertainty, and (id, content hash) for every evidence item linked
to the activity, sorted by id. A cached narrative whose stored hash differs
from the recomputed one is stale.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass

from rdevidence.config import NARRATIVE_HASH_HYPOTHESIS_CHARS
from rdevidence.evidence.models import CoreActivity, EvidenceItem
from rdevidence.narratives.models import ActivityNarrative


def compute_input_hash(
    hypothesis: str | None,
    activity: CoreActivity,
    evidence: Sequence[EvidenceItem],
) -> str:
    payload = {
        "hypothesis": (hypothesis or "")[:NARRATIVE_HASH_HYPOTHESIS_CHARS],
        "activity": {"name": activity.name, "uncertainty": activity.uncertainty},
        "evidence": sorted(
            ({"id": item.id, "hash": item.fingerprint_hash()} for item in evidence),
            key=lambda entry: entry["id"],
        ),
    }
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StalenessCheck:
    current_hash: str
    cached_hash: str | None

    @property
    def is_stale(self) -> bool:
        return self.cached_hash is not None and self.cached_hash != self.current_hash


def check_staleness(
    narrative: ActivityNarrative | None,
    hypothesis: str | None,
    activity: CoreActivity,
    evidence: Sequence[EvidenceItem],
) -> StalenessCheck:
    return StalenessCheck(
        current_hash=compute_input_hash(hypothesis, activity, evidence),
        cached_hash=narrative.input_hash if narrative else None,
    )
