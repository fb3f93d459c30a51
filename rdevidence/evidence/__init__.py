"""Evidence, core activity and project records shared by both pipelines."""

from rdevidence.evidence.models import (
    SYSTEMATIC_STEPS,
    Confidence,
    CoreActivity,
    EvidenceItem,
    LinkSource,
    Project,
    SystematicStep,
)

__all__ = [
    "SYSTEMATIC_STEPS",
    "Confidence",
    "CoreActivity",
    "EvidenceItem",
    "LinkSource",
    "Project",
    "SystematicStep",
]
