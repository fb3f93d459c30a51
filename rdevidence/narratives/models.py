"""
Narrative queue and cache models (Pydantic v2).

NarrativeJob rows are unique per activity; ActivityNarrative rows are the
cached output, also unique per activity.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rdevidence.evidence.models import Confidence, SystematicStep
from rdevidence.utils.timestamps import from_db_ts, utc_now


class NarrativeJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    activity_id: str
    project_id: str
    priority: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    claimed_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> NarrativeJob:
        return cls(
            id=row["id"],
            activity_id=row["activity_id"],
            project_id=row["project_id"],
            priority=row.get("priority") or 0,
            created_at=from_db_ts(row["created_at"]),
            updated_at=from_db_ts(row["updated_at"]),
            claimed_at=from_db_ts(row.get("claimed_at")),
            last_error=row.get("last_error"),
        )


class ActivityNarrative(BaseModel):
    """Cached narrative for one activity."""

    model_config = ConfigDict(frozen=True)

    activity_id: str
    text: str
    confidence: Confidence = Confidence.LOW
    missing_steps: list[SystematicStep] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)
    input_hash: str
    snippet_count: int = 0
    version: int = 1

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ActivityNarrative:
        return cls(
            activity_id=row["activity_id"],
            text=row["text"],
            confidence=Confidence.normalize(row.get("confidence")),
            missing_steps=[SystematicStep.parse(s) for s in json.loads(row.get("missing_steps") or "[]")],
            generated_at=from_db_ts(row["generated_at"]),
            input_hash=row["input_hash"],
            snippet_count=row.get("snippet_count") or 0,
            version=row.get("version") or 1,
        )


@dataclass(frozen=True)
class GeneratedNarrative:
    """Parsed generator output."""

    text: str
    confidence: Confidence
    missing_steps: list[SystematicStep] = field(default_factory=list)


@dataclass
class DrainResult:
    """Summary of one drain run."""

    ok: bool = True
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": self.ok,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "errors": list(self.errors),
        }
        if self.message:
            data["message"] = self.message
        if self.error:
            data["error"] = self.error
        return data
