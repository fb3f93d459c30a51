"""
Narrative Generator - Gemini adapter for activity narratives.

Builds a size-bounded prompt from an activity's evidence snippets (grouped
by systematic step) and parses the model's JSON object. Any call or parse
failure raises NarrativeGenerationError; the worker leaves the job queued.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from rdevidence.config import (
    NARRATIVE_ACTIVITY_NAME_MAX_WORDS,
    NARRATIVE_HYPOTHESIS_MAX_WORDS,
    NARRATIVE_SNIPPET_MAX_CHARS,
    NARRATIVE_UNCERTAINTY_MAX_WORDS,
)
from rdevidence.evidence.models import Confidence, CoreActivity, Project, SystematicStep
from rdevidence.infrastructure.settings import llm_credentials_present
from rdevidence.narratives.models import GeneratedNarrative
from rdevidence.narratives.snippets import SnippetSet
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter
from rdevidence.utils.text import strip_code_fences, truncate_words

logger = get_logger(__name__)

LLMCall = Callable[[str], str]

NARRATIVE_MAX_OUTPUT_TOKENS = 500

_JSON_OBJECT = re.compile(r'\{\s*"narrative"[\s\S]*\}')


class NarrativeGenerationError(RuntimeError):
    """The generator call failed or returned something unusable."""


class NarrativeSchema(BaseModel):
    """Schema for the model's JSON object."""

    narrative: str = Field(min_length=1)
    confidence: Any = None
    missing_steps: list[Any] | None = None


def _default_llm_call(prompt: str) -> str:
    from rdevidence.llm.retry import call_llm

    return call_llm(prompt, counter_prefix="narratives", max_tokens=NARRATIVE_MAX_OUTPUT_TOKENS)


class NarrativeGenerator:
    PROMPT_TEMPLATE = """Generate R&D narrative for Australian RDTI compliance. Return ONLY JSON.

Project Hypothesis (<={hypothesis_words}w): {hypothesis}

Activity: {activity_name} (<={name_words}w)
Uncertainty: {uncertainty} (<={uncertainty_words}w)

Evidence by Step (id|date|source|<={snippet_chars} chars):
{evidence}

Task:
- Write 5-8 sentence paragraph following H->E->O->Ev->C chronological order
- Include up to 3 short quotes with date+source (<=240 chars total across all quotes)
- List missing steps at end if any: {missing}
- Factual, neutral tone; no legal/eligibility claims
- Focus on numbers, metrics, thresholds, and technical details from snippets

JSON format (no code fences):
{{
  "narrative": "paragraph text...",
  "confidence": "high" or "low",
  "missing_steps": ["Observation", "Conclusion"]
}}"""

    def __init__(self, llm_call: LLMCall | None = None):
        self._llm_call = llm_call

    def is_configured(self) -> bool:
        return self._llm_call is not None or llm_credentials_present()

    def generate(self, project: Project, activity: CoreActivity, snippets: SnippetSet) -> GeneratedNarrative:
        """
        Raises:
            NarrativeGenerationError: On any call or parse failure
        """
        prompt = self.build_prompt(project, activity, snippets)
        llm_call = self._llm_call or _default_llm_call
        try:
            response_text = llm_call(prompt)
        except Exception as e:
            counter("narratives.generator.error")
            raise NarrativeGenerationError(f"Narrative call failed: {e}") from e
        return self.parse_response(response_text)

    def build_prompt(self, project: Project, activity: CoreActivity, snippets: SnippetSet) -> str:
        evidence = "\n\n".join(
            f"[{step.value}]\n" + "\n".join(s.prompt_line() for s in snippets.by_step[step])
            for step in snippets.steps_present
        )
        missing = ", ".join(step.value for step in snippets.missing_steps) or "none"

        return self.PROMPT_TEMPLATE.format(
            hypothesis_words=NARRATIVE_HYPOTHESIS_MAX_WORDS,
            hypothesis=truncate_words(project.current_hypothesis or "Not specified", NARRATIVE_HYPOTHESIS_MAX_WORDS),
            activity_name=truncate_words(activity.name, NARRATIVE_ACTIVITY_NAME_MAX_WORDS),
            name_words=NARRATIVE_ACTIVITY_NAME_MAX_WORDS,
            uncertainty=truncate_words(activity.uncertainty, NARRATIVE_UNCERTAINTY_MAX_WORDS),
            uncertainty_words=NARRATIVE_UNCERTAINTY_MAX_WORDS,
            snippet_chars=NARRATIVE_SNIPPET_MAX_CHARS,
            evidence=evidence,
            missing=missing,
        )

    def parse_response(self, response_text: str) -> GeneratedNarrative:
        """
        Parse {narrative, confidence, missing_steps}.

        Unknown step names in missing_steps are dropped.

        Raises:
            NarrativeGenerationError: If there is no JSON object with a narrative
        """
        text = strip_code_fences(response_text or "")
        match = _JSON_OBJECT.search(text)
        try:
            data = json.loads(match.group(0) if match else text)
            validated = NarrativeSchema.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            counter("narratives.generator.parse_error")
            logger.warning("Failed to parse narrative response: %s", text[:200])
            raise NarrativeGenerationError("Failed to parse narrative response") from e

        missing = [SystematicStep.parse(str(s)) for s in validated.missing_steps or []]
        return GeneratedNarrative(
            text=validated.narrative,
            confidence=Confidence.normalize(validated.confidence),
            missing_steps=[s for s in dict.fromkeys(missing) if s != SystematicStep.UNKNOWN],
        )
