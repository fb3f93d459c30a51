"""
Domain models (Pydantic v2) for evidence, core activities and projects.

Rows are read from SQLite via from_db_row(); timestamps are timezone-aware
UTC datetimes in memory and fixed-width ISO strings on disk.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from rdevidence.utils.hashing import hash_content
from rdevidence.utils.timestamps import from_db_ts, utc_now


class SystematicStep(str, Enum):
    """R&D method stage an evidence item documents (ordered)."""

    HYPOTHESIS = "Hypothesis"
    EXPERIMENT = "Experiment"
    OBSERVATION = "Observation"
    EVALUATION = "Evaluation"
    CONCLUSION = "Conclusion"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> SystematicStep:
        try:
            return cls(value) if value else cls.UNKNOWN
        except ValueError:
            return cls.UNKNOWN


SYSTEMATIC_STEPS: tuple[SystematicStep, ...] = (
    SystematicStep.HYPOTHESIS,
    SystematicStep.EXPERIMENT,
    SystematicStep.OBSERVATION,
    SystematicStep.EVALUATION,
    SystematicStep.CONCLUSION,
)


class LinkSource(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"

    @classmethod
    def normalize(cls, value: Any) -> Confidence:
        """Anything other than an explicit "high" counts as low confidence."""
        if isinstance(value, str) and value.strip().lower() == "high":
            return cls.HIGH
        return cls.LOW


class Project(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    current_hypothesis: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    deleted_at: datetime | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Project:
        return cls(
            id=row["id"],
            name=row.get("name") or "",
            current_hypothesis=row.get("current_hypothesis"),
            created_at=from_db_ts(row["created_at"]),
            deleted_at=from_db_ts(row.get("deleted_at")),
        )


class CoreActivity(BaseModel):
    """A declared R&D activity with its technical-uncertainty statement."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    name: str
    uncertainty: str = ""
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def match_text(self) -> str:
        """Text the rule score compares evidence against."""
        return f"{self.name} {self.uncertainty}"

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> CoreActivity:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            uncertainty=row.get("uncertainty") or "",
            created_at=from_db_ts(row["created_at"]),
        )


class EvidenceItem(BaseModel):
    """
    One unit of contemporaneous work evidence (note, email, commit, upload).

    Content never changes after ingestion; only the link fields are written,
    by the linking engine (auto) or by a person (manual).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    content: str | None = None
    source: str = "note"
    file_url: str | None = None
    systematic_step: SystematicStep = SystematicStep.UNKNOWN
    created_at: datetime = Field(default_factory=utc_now)
    soft_deleted: bool = False

    linked_activity_id: str | None = None
    link_source: LinkSource | None = None
    link_reason: str | None = None
    link_updated_at: datetime | None = None
    link_attempted_at: datetime | None = None
    content_hash: str | None = None

    @property
    def is_manually_linked(self) -> bool:
        return self.link_source == LinkSource.MANUAL

    @property
    def is_attachment(self) -> bool:
        return bool(self.file_url)

    def current_content_hash(self) -> str | None:
        return hash_content(self.content)

    def fingerprint_hash(self) -> str | None:
        """Stored hash when processed, otherwise the hash of the current content."""
        return self.content_hash or self.current_content_hash()

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> EvidenceItem:
        link_source = row.get("link_source")
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            content=row.get("content"),
            source=row.get("source") or "note",
            file_url=row.get("file_url"),
            systematic_step=SystematicStep.parse(row.get("systematic_step_primary")),
            created_at=from_db_ts(row["created_at"]),
            soft_deleted=bool(row.get("soft_deleted")),
            linked_activity_id=row.get("linked_activity_id"),
            link_source=LinkSource(link_source) if link_source else None,
            link_reason=row.get("link_reason"),
            link_updated_at=from_db_ts(row.get("link_updated_at")),
            link_attempted_at=from_db_ts(row.get("link_attempted_at")),
            content_hash=row.get("content_hash"),
        )
