"""
Per-item reprocessing policy for the linking pipeline.

The daily per-project cap lives in rdevidence.infrastructure.budget; this
module decides, item by item, whether evidence is due for (re)classification
so the pipeline can run on a fixed schedule without re-sending the same
items.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from rdevidence.config import LINK_RETRY_COOLDOWN_HOURS, LINK_SUCCESS_COOLDOWN_HOURS
from rdevidence.evidence.models import EvidenceItem
from rdevidence.utils.timestamps import hours_between


class Eligibility(str, Enum):
    NEVER_PROCESSED = "never_processed"
    CONTENT_CHANGED = "content_changed"
    COOLDOWN_EXPIRED = "cooldown_expired"
    MANUAL_LINK = "manual_link"
    SUCCESS_COOLDOWN = "success_cooldown"
    RETRY_COOLDOWN = "retry_cooldown"


_ELIGIBLE = frozenset(
    {Eligibility.NEVER_PROCESSED, Eligibility.CONTENT_CHANGED, Eligibility.COOLDOWN_EXPIRED}
)


@dataclass(frozen=True)
class CooldownState:
    eligibility: Eligibility
    hours_since_link: float | None = None
    hours_since_attempt: float | None = None

    @property
    def is_eligible(self) -> bool:
        return self.eligibility in _ELIGIBLE


def evaluate_cooldown(item: EvidenceItem, now: datetime) -> CooldownState:
    """
    Decide whether an item is due for classification.

    Checked in order:
        manual link            -> never
        never attempted        -> yes
        content hash changed   -> yes
        linked < 24h ago       -> no (success cooldown)
        attempted < 1h ago     -> no (retry cooldown)
        otherwise              -> yes
    """
    if item.is_manually_linked:
        return CooldownState(Eligibility.MANUAL_LINK)

    if item.link_updated_at is None and item.link_attempted_at is None:
        return CooldownState(Eligibility.NEVER_PROCESSED)

    if item.content_hash and item.content_hash != item.current_content_hash():
        return CooldownState(Eligibility.CONTENT_CHANGED)

    since_link = hours_between(item.link_updated_at, now) if item.link_updated_at else None
    since_attempt = hours_between(item.link_attempted_at, now) if item.link_attempted_at else None

    if since_link is not None and since_link < LINK_SUCCESS_COOLDOWN_HOURS:
        return CooldownState(Eligibility.SUCCESS_COOLDOWN, since_link, since_attempt)

    if since_attempt is not None and since_attempt < LINK_RETRY_COOLDOWN_HOURS:
        return CooldownState(Eligibility.RETRY_COOLDOWN, since_link, since_attempt)

    return CooldownState(Eligibility.COOLDOWN_EXPIRED, since_link, since_attempt)


def is_eligible_for_processing(item: EvidenceItem, now: datetime) -> bool:
    return evaluate_cooldown(item, now).is_eligible
