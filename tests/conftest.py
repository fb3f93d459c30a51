"""
Pytest configuration shared across unit and integration tests

Provides a temporary SQLite database per test, record factories and fake
LLM callables so no test reaches Gemini.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from rdevidence.evidence.models import CoreActivity, EvidenceItem, Project, SystematicStep
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository, ProjectRepository
from rdevidence.infrastructure.database import init_database, reset_pool
from rdevidence.observability.telemetry import reset_telemetry
from rdevidence.utils.timestamps import utc_now


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """No real credentials, no scheduler secret, development mode."""
    for name in ("GOOGLE_API_KEY", "GOOGLE_CLOUD_PROJECT", "CRON_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RDEVIDENCE_ENV", "development")
    reset_telemetry()
    yield


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh database file for one test"""
    db_path = tmp_path / "rdevidence-test.db"
    monkeypatch.setenv("RDEVIDENCE_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    yield db_path
    reset_pool()


@pytest.fixture
def now() -> datetime:
    return utc_now()


@pytest.fixture
def make_project(temp_db) -> Callable[..., Project]:
    def _make(hypothesis: str = "Adaptive caching reduces query latency under burst load", **kwargs) -> Project:
        kwargs.setdefault("name", "Test project")
        return ProjectRepository.create(current_hypothesis=hypothesis, **kwargs)

    return _make


@pytest.fixture
def make_activity(temp_db, now) -> Callable[..., CoreActivity]:
    def _make(
        project_id: str,
        name: str = "Adaptive cache eviction",
        uncertainty: str = "Whether adaptive eviction keeps latency stable during burst traffic",
        created_at: datetime | None = None,
    ) -> CoreActivity:
        return ActivityRepository.create(
            project_id=project_id,
            name=name,
            uncertainty=uncertainty,
            created_at=created_at or now - timedelta(days=30),
        )

    return _make


@pytest.fixture
def make_evidence(temp_db, now) -> Callable[..., EvidenceItem]:
    def _make(
        project_id: str,
        content: str = "Measured eviction latency during burst traffic with the adaptive cache enabled",
        step: SystematicStep = SystematicStep.EXPERIMENT,
        created_at: datetime | None = None,
        **kwargs,
    ) -> EvidenceItem:
        return EvidenceRepository.create(
            project_id=project_id,
            content=content,
            systematic_step=step,
            created_at=created_at or now - timedelta(days=1),
            **kwargs,
        )

    return _make


class FakeLLM:
    """Callable standing in for call_llm; records prompts, replays responses."""

    def __init__(self, response: str | Callable[[str], str] | Exception = "[]"):
        self.response = response
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        if callable(self.response):
            return self.response(prompt)
        return self.response

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture
def fake_llm() -> type[FakeLLM]:
    return FakeLLM


@pytest.fixture
def link_response():
    return _link_response


def _link_response(*entries: tuple[str, str | None, str]) -> str:
    """JSON array the classifier would return: (evidence_id, activity_name, confidence)."""
    return json.dumps(
        [
            {"evidence_id": evidence_id, "activity": activity, "reason": "matches", "confidence": confidence}
            for evidence_id, activity, confidence in entries
        ]
    )


@pytest.fixture
def narrative_response():
    return _narrative_response


def _narrative_response(
    text: str = "The team hypothesised that adaptive eviction would help.", confidence: str = "high"
) -> str:
    return json.dumps({"narrative": text, "confidence": confidence, "missing_steps": ["Conclusion"]})
