"""
Narrative drain worker - processes one bounded batch of queued jobs.

Per drain:
    1. Claim up to NARRATIVE_BATCH_SIZE jobs (priority DESC, oldest first)
    2. Per project, check the daily snippet budget; over-budget projects
       keep their jobs queued for a later drain
    3. Per job: orphan -> delete; too little evidence -> placeholder and
       delete; otherwise generate
    4. Generation runs on a bounded thread pool; cache writes and queue
       updates happen on the calling thread
    5. A failed generation releases the job with last_error set; it is
       retried on the next drain
"""

from __future__ import annotations

import concurrent.futures
import time
from dataclasses import dataclass
from datetime import datetime

from rdevidence.config import (
    LLM_MAX_WORKERS,
    NARRATIVE_BATCH_SIZE,
    NARRATIVE_PLACEHOLDER_TEXT,
    NARRATIVE_SNIPPETS_PER_GENERATION,
)
from rdevidence.evidence.models import Confidence, CoreActivity, Project
from rdevidence.evidence.repository import ActivityRepository, EvidenceRepository, ProjectRepository
from rdevidence.infrastructure.budget import check_narrative_budget
from rdevidence.narratives.generator import NarrativeGenerationError, NarrativeGenerator
from rdevidence.narratives.models import DrainResult, GeneratedNarrative, NarrativeJob
from rdevidence.narratives.queue import NarrativeJobQueue
from rdevidence.narratives.repository import ActivityNarrativeRepository
from rdevidence.narratives.snippets import SnippetSet, extract_snippets
from rdevidence.narratives.staleness import compute_input_hash
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event, time_block
from rdevidence.utils.timestamps import utc_now

logger = get_logger(__name__)


@dataclass
class PreparedJob:
    job: NarrativeJob
    project: Project
    activity: CoreActivity
    snippets: SnippetSet
    input_hash: str


class NarrativeWorker:
    def __init__(
        self,
        generator: NarrativeGenerator | None = None,
        batch_size: int = NARRATIVE_BATCH_SIZE,
        max_workers: int = LLM_MAX_WORKERS,
    ):
        self.generator = generator or NarrativeGenerator()
        self.batch_size = batch_size
        self.max_workers = max_workers

    def drain(self, now: datetime | None = None) -> DrainResult:
        """
        Process one batch of narrative jobs.

        Returns:
            DrainResult summary; generation failures are counted, not raised
        """
        start = time.perf_counter()
        now = now or utc_now()
        result = DrainResult()

        if not self.generator.is_configured():
            counter("narratives.config_error")
            logger.error("Narrative generator not configured (no Gemini credentials)")
            result.ok = False
            result.error = "LLM credentials not configured"
            return result

        with time_block("narratives.drain.latency"):
            jobs = NarrativeJobQueue.claim_batch(self.batch_size, now=now)
            if not jobs:
                result.message = "No jobs in queue"
            else:
                logger.info("Found %d narrative jobs", len(jobs))
                self._process(jobs, now, result)

        result.duration_ms = int((time.perf_counter() - start) * 1000)
        log_event(
            "narratives.drain.completed",
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            duration_ms=result.duration_ms,
        )
        return result

    def _process(self, jobs: list[NarrativeJob], now: datetime, result: DrainResult) -> None:
        by_project: dict[str, list[NarrativeJob]] = {}
        for job in jobs:
            by_project.setdefault(job.project_id, []).append(job)

        to_generate: list[PreparedJob] = []
        for project_id, project_jobs in by_project.items():
            budget = check_narrative_budget(project_id, now=now)
            if not budget.is_allowed:
                logger.info("Daily budget exceeded for project %s (%d snippets used)", project_id, budget.used)
                result.skipped += len(project_jobs)
                for job in project_jobs:
                    NarrativeJobQueue.release(job.id, job.last_error)
                continue

            # Each generation is estimated at a fixed number of snippets
            slots = -(-budget.remaining // NARRATIVE_SNIPPETS_PER_GENERATION)
            for job in project_jobs:
                prepared = self._prepare(job, now, result)
                if prepared is None:
                    continue
                if slots <= 0:
                    result.skipped += 1
                    NarrativeJobQueue.release(job.id, job.last_error)
                    continue
                slots -= 1
                to_generate.append(prepared)

        if to_generate:
            self._generate_all(to_generate, now, result)

    def _prepare(self, job: NarrativeJob, now: datetime, result: DrainResult) -> PreparedJob | None:
        """Load inputs for a job; handles orphans and ineligible activities in place."""
        try:
            project = ProjectRepository.get_by_id(job.project_id)
            activity = ActivityRepository.get_by_id(job.activity_id)
            if project is None or activity is None:
                counter("narratives.job.orphaned")
                logger.error("Project or activity not found for job %s (activity %s)", job.id, job.activity_id)
                result.failed += 1
                NarrativeJobQueue.delete(job.id)
                return None

            linked = EvidenceRepository.list_linked(activity.id)
            snippets = extract_snippets(linked)
            input_hash = compute_input_hash(project.current_hypothesis, activity, linked)

            if not snippets.is_eligible:
                logger.info("Activity %s not eligible: %s", activity.id, snippets.ineligible_reason())
                ActivityNarrativeRepository.upsert(
                    activity_id=activity.id,
                    text=NARRATIVE_PLACEHOLDER_TEXT,
                    confidence=Confidence.LOW,
                    missing_steps=snippets.missing_steps,
                    input_hash=input_hash,
                    snippet_count=0,
                    generated_at=now,
                )
                counter("narratives.placeholder")
                result.skipped += 1
                NarrativeJobQueue.complete(job)
                return None

            return PreparedJob(job, project, activity, snippets, input_hash)

        except Exception as e:
            counter("narratives.job.error")
            logger.error("Failed to prepare job %s: %s", job.id, e)
            result.failed += 1
            result.errors.append({"job_id": job.id, "activity_id": job.activity_id, "error": str(e)})
            NarrativeJobQueue.release(job.id, str(e))
            return None

    def _generate_all(self, prepared: list[PreparedJob], now: datetime, result: DrainResult) -> None:
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_job = {
                executor.submit(self.generator.generate, p.project, p.activity, p.snippets): p for p in prepared
            }
            for future in concurrent.futures.as_completed(future_to_job):
                p = future_to_job[future]
                try:
                    narrative = future.result()
                except NarrativeGenerationError as e:
                    self._fail(p, e, result)
                    continue
                try:
                    self._store(p, narrative, now)
                except Exception as e:
                    self._fail(p, e, result)
                    continue
                result.processed += 1

    def _store(self, p: PreparedJob, narrative: GeneratedNarrative, now: datetime) -> None:
        ActivityNarrativeRepository.upsert(
            activity_id=p.activity.id,
            text=narrative.text,
            confidence=narrative.confidence,
            missing_steps=narrative.missing_steps,
            input_hash=p.input_hash,
            snippet_count=p.snippets.total,
            generated_at=now,
        )
        NarrativeJobQueue.complete(p.job)
        counter("narratives.generated")
        logger.info(
            "Generated narrative for activity %s: hash=%s, confidence=%s, steps=%d",
            p.activity.id,
            p.input_hash[:16],
            narrative.confidence.value,
            len(p.snippets.steps_present),
        )

    @staticmethod
    def _fail(p: PreparedJob, error: Exception, result: DrainResult) -> None:
        counter("narratives.job.failed")
        logger.error("Failed to process job %s: %s", p.job.id, error)
        result.failed += 1
        result.errors.append({"job_id": p.job.id, "activity_id": p.activity.id, "error": str(error)})
        NarrativeJobQueue.release(p.job.id, str(error))


def drain_narrative_queue(worker: NarrativeWorker | None = None, now: datetime | None = None) -> DrainResult:
    return (worker or NarrativeWorker()).drain(now=now)
