"""
Evidence snippet extraction and eligibility for narrative generation.

Per systematic step, the newest NARRATIVE_MAX_SNIPPETS_PER_STEP linked
items are used (file attachments never), each sanitized and cut to
NARRATIVE_SNIPPET_MAX_CHARS. Evidence with step "Unknown" is not sent.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from rdevidence.config import (
    NARRATIVE_MAX_SNIPPETS_PER_STEP,
    NARRATIVE_MIN_DISTINCT_STEPS,
    NARRATIVE_MIN_EVIDENCE_ITEMS,
    NARRATIVE_SNIPPET_MAX_CHARS,
)
from rdevidence.evidence.models import SYSTEMATIC_STEPS, EvidenceItem, SystematicStep
from rdevidence.utils.text import clean_snippet

_SOURCE_LABELS = {"email": "Email", "note": "Note"}


def source_label(source: str | None) -> str:
    return _SOURCE_LABELS.get(source or "", "Upload")


@dataclass(frozen=True)
class Snippet:
    evidence_id: str
    step: SystematicStep
    date: str
    source: str
    text: str

    def prompt_line(self) -> str:
        return f"- {self.evidence_id[:8]}|{self.date}|{self.source}|{self.text}"


@dataclass
class SnippetSet:
    """Snippets grouped by step, in step order."""

    by_step: dict[SystematicStep, list[Snippet]] = field(default_factory=dict)

    @property
    def steps_present(self) -> list[SystematicStep]:
        return [step for step in SYSTEMATIC_STEPS if self.by_step.get(step)]

    @property
    def missing_steps(self) -> list[SystematicStep]:
        return [step for step in SYSTEMATIC_STEPS if not self.by_step.get(step)]

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.by_step.values())

    @property
    def is_eligible(self) -> bool:
        """Enough evidence to summarize: 2+ distinct steps OR 3+ items."""
        return len(self.steps_present) >= NARRATIVE_MIN_DISTINCT_STEPS or self.total >= NARRATIVE_MIN_EVIDENCE_ITEMS

    def ineligible_reason(self) -> str:
        return (
            f"Not enough evidence: {len(self.steps_present)} steps, {self.total} items "
            f"(need >={NARRATIVE_MIN_DISTINCT_STEPS} steps OR >={NARRATIVE_MIN_EVIDENCE_ITEMS} items)"
        )


def extract_snippets(
    evidence: Sequence[EvidenceItem],
    per_step: int = NARRATIVE_MAX_SNIPPETS_PER_STEP,
    max_chars: int = NARRATIVE_SNIPPET_MAX_CHARS,
) -> SnippetSet:
    """Build the snippet set from an activity's linked evidence."""
    newest_first = sorted(evidence, key=lambda e: e.created_at, reverse=True)
    snippets = SnippetSet()

    for step in SYSTEMATIC_STEPS:
        chosen = [
            item
            for item in newest_first
            if item.systematic_step == step and not item.is_attachment and not item.soft_deleted
        ][:per_step]
        if chosen:
            snippets.by_step[step] = [
                Snippet(
                    evidence_id=item.id,
                    step=step,
                    date=item.created_at.date().isoformat(),
                    source=source_label(item.source),
                    text=clean_snippet(item.content, max_chars),
                )
                for item in chosen
            ]
    return snippets
