"""
Evidence Link Classifier - Gemini adapter for the linking pipeline.

Stage 2 of the linking pipeline. Sends one compact batch prompt for every
candidate that passed the prefilter and returns one proposal per entry of
the model's JSON array. Activity names are resolved to ids by exact match
on the (truncated) name shown in the prompt; anything else becomes "no
activity".

Any failure (timeout, API error, non-JSON or non-array answer) raises
LinkClassifierError. The engine owns the failure policy.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from rdevidence.config import (
    LINK_ACTIVITY_NAME_MAX_CHARS,
    LINK_HYPOTHESIS_MAX_WORDS,
    LINK_PROMPT_TERMS,
    LINK_REASON_MAX_CHARS,
    LINK_SNIPPET_MAX_CHARS,
    LINK_UNCERTAINTY_MAX_WORDS,
)
from rdevidence.evidence.models import Confidence, CoreActivity, Project
from rdevidence.infrastructure.settings import GEMINI_MODEL, llm_credentials_present
from rdevidence.linking.types import LinkCandidate, LinkProposal
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event
from rdevidence.utils.text import strip_code_fences, truncate_words

logger = get_logger(__name__)

LLMCall = Callable[[str], str]

_JSON_ARRAY = re.compile(r"\[\s*\{[\s\S]*\}\s*\]")


class LinkClassifierError(RuntimeError):
    """The classifier call failed or returned something unusable."""


class LinkProposalSchema(BaseModel):
    """One entry of the model's JSON array."""

    evidence_id: str
    activity: str | None = None
    reason: Any = None
    confidence: Any = None


def _default_llm_call(prompt: str) -> str:
    from rdevidence.llm.retry import call_llm

    return call_llm(prompt, counter_prefix="linking")


class EvidenceLinkClassifier:
    """
    Batch classifier proposing one activity (or none) per evidence item.

    Side Effects:
        - Calls Gemini once per classify() call
        - Increments linking.classifier.* telemetry counters
    """

    PROMPT_TEMPLATE = """Link R&D evidence to core activities. Return ONLY valid JSON.

## Project Hypothesis
{hypothesis}

## Core Activities (link to exact names):
{activities}

## Evidence (id | step | date | snippet <=200 chars | top terms):
{evidence}

## Task
For each evidence ID:
- **activity**: exact activity name OR null (only if strong match)
- **reason**: <=110 chars why it matches
- **confidence**: "high" or "low"

Return null for weak/ambiguous signals. Require strong keyword + step relevance.

## JSON (no fences):
[
  {{"evidence_id": "abc", "activity": "Name" or null, "reason": "...", "confidence": "high"}}
]"""

    def __init__(self, llm_call: LLMCall | None = None):
        self._llm_call = llm_call

    def is_configured(self) -> bool:
        """An injected callable, or Gemini credentials in the environment."""
        return self._llm_call is not None or llm_credentials_present()

    def classify(
        self,
        project: Project,
        activities: Sequence[CoreActivity],
        candidates: Sequence[LinkCandidate],
    ) -> list[LinkProposal]:
        """
        Ask the model to link each candidate to at most one activity.

        Raises:
            LinkClassifierError: On any call or parse failure
        """
        prompt = self.build_prompt(project, activities, candidates)
        llm_call = self._llm_call or _default_llm_call

        try:
            response_text = llm_call(prompt)
        except Exception as e:
            counter("linking.classifier.error")
            log_event("linking.classifier.error", error=str(e), model=GEMINI_MODEL)
            raise LinkClassifierError(f"Classifier call failed: {e}") from e

        proposals = self.parse_response(response_text, activities)
        counter("linking.classifier.success")
        log_event(
            "linking.classifier.result",
            project_id=project.id,
            candidates=len(candidates),
            proposals=len(proposals),
            with_activity=sum(1 for p in proposals if p.activity_id),
        )
        return proposals

    def build_prompt(
        self,
        project: Project,
        activities: Sequence[CoreActivity],
        candidates: Sequence[LinkCandidate],
    ) -> str:
        hypothesis = truncate_words(project.current_hypothesis or "Not specified", LINK_HYPOTHESIS_MAX_WORDS)

        activity_lines = "\n".join(
            f"{a.name[:LINK_ACTIVITY_NAME_MAX_CHARS]}: {truncate_words(a.uncertainty, LINK_UNCERTAINTY_MAX_WORDS)}"
            for a in activities
        )

        evidence_lines = "\n".join(
            " | ".join(
                (
                    c.id,
                    f"[{c.evidence.systematic_step.value}]",
                    c.evidence.created_at.date().isoformat(),
                    c.snippet[:LINK_SNIPPET_MAX_CHARS],
                    ", ".join(c.top_terms[:LINK_PROMPT_TERMS]),
                )
            )
            for c in candidates
        )

        return self.PROMPT_TEMPLATE.format(
            hypothesis=hypothesis,
            activities=activity_lines,
            evidence=evidence_lines,
        )

    def parse_response(self, response_text: str, activities: Sequence[CoreActivity]) -> list[LinkProposal]:
        """
        Parse the model's JSON array into proposals.

        Entries without an evidence_id are dropped. Activity names that do
        not exactly match a (truncated) activity name resolve to None.

        Raises:
            LinkClassifierError: If the text is not a JSON array
        """
        text = strip_code_fences(response_text or "")
        match = _JSON_ARRAY.search(text)

        try:
            data = json.loads(match.group(0) if match else text)
        except json.JSONDecodeError as e:
            counter("linking.classifier.parse_error")
            logger.warning("Failed to parse classifier response: %s", text[:200])
            raise LinkClassifierError("Failed to parse classifier response") from e

        if not isinstance(data, list):
            counter("linking.classifier.parse_error")
            raise LinkClassifierError("Classifier response is not a JSON array")

        name_to_id = {a.name[:LINK_ACTIVITY_NAME_MAX_CHARS]: a.id for a in activities}

        proposals: list[LinkProposal] = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("evidence_id"):
                continue
            try:
                validated = LinkProposalSchema.model_validate(
                    {**entry, "evidence_id": str(entry["evidence_id"])}
                )
            except ValidationError as e:
                counter("linking.classifier.invalid_entry")
                logger.warning("Skipping invalid classifier entry: %s", e)
                continue

            reason = str(validated.reason)[:LINK_REASON_MAX_CHARS] if validated.reason else None
            proposals.append(
                LinkProposal(
                    evidence_id=validated.evidence_id,
                    activity_id=name_to_id.get(validated.activity) if validated.activity else None,
                    reason=reason,
                    confidence=Confidence.normalize(validated.confidence),
                )
            )
        return proposals
