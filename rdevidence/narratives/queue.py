"""
Narrative job queue backed by the narrative_jobs table.

At most one job per activity: enqueue is an upsert that keeps the higher
priority and the original created_at, so re-enqueuing never duplicates a job
and never sends it to the back of the line.

Draining workers claim jobs by stamping claimed_at. A claim older than
NARRATIVE_JOB_CLAIM_TTL_MINUTES is considered abandoned and can be taken
again. A finished job is deleted only if nobody re-enqueued it in the
meantime (updated_at unchanged); otherwise its claim is released so the
newer request is processed on the next drain.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from rdevidence.config import NARRATIVE_BATCH_SIZE, NARRATIVE_JOB_CLAIM_TTL_MINUTES
from rdevidence.events import EventBus, EvidenceSetChanged
from rdevidence.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from rdevidence.narratives.models import NarrativeJob
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event
from rdevidence.utils.timestamps import to_db_ts, utc_now

logger = get_logger(__name__)

PRIORITY_DEFAULT = 0
PRIORITY_USER = 1


class NarrativeJobQueue:
    @staticmethod
    @retry_on_db_lock()
    def enqueue(
        activity_id: str,
        project_id: str,
        priority: int = PRIORITY_DEFAULT,
        now: datetime | None = None,
    ) -> None:
        """
        Add a job for an activity, or refresh the pending one (idempotent upsert).

        Side Effects:
            - Inserts or updates one narrative_jobs row
        """
        ts = to_db_ts(now or utc_now())
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO narrative_jobs (activity_id, project_id, priority, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(activity_id) DO UPDATE SET
                    project_id = excluded.project_id,
                    priority = MAX(narrative_jobs.priority, excluded.priority),
                    updated_at = excluded.updated_at
                """,
                (activity_id, project_id, priority, ts, ts),
            )
        counter("narratives.queue.enqueued")
        log_event("narratives.queue.enqueued", activity_id=activity_id, priority=priority)

    @staticmethod
    @retry_on_db_lock()
    def claim_batch(
        limit: int = NARRATIVE_BATCH_SIZE,
        now: datetime | None = None,
        claim_ttl: timedelta = timedelta(minutes=NARRATIVE_JOB_CLAIM_TTL_MINUTES),
    ) -> list[NarrativeJob]:
        """
        Claim up to `limit` unclaimed jobs, highest priority then oldest first.

        Returns:
            The jobs this caller now owns
        """
        now = now or utc_now()
        ts = to_db_ts(now)
        stale_before = to_db_ts(now - claim_ttl)

        with db_transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM narrative_jobs
                WHERE claimed_at IS NULL OR claimed_at < ?
                ORDER BY priority DESC, created_at ASC, id ASC
                LIMIT ?
                """,
                (stale_before, limit),
            ).fetchall()

            claimed = []
            for row in rows:
                cursor = conn.execute(
                    """
                    UPDATE narrative_jobs SET claimed_at = ?
                    WHERE id = ? AND (claimed_at IS NULL OR claimed_at < ?)
                    """,
                    (ts, row["id"], stale_before),
                )
                if cursor.rowcount:
                    claimed.append(NarrativeJob.from_db_row({**dict(row), "claimed_at": ts}))

        if claimed:
            counter("narratives.queue.claimed", len(claimed))
        return claimed

    @staticmethod
    @retry_on_db_lock()
    def complete(job: NarrativeJob) -> bool:
        """
        Remove a processed job unless it was re-enqueued while in flight.

        Returns:
            True if the job was deleted, False if a newer request keeps it queued
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM narrative_jobs WHERE id = ? AND updated_at = ?",
                (job.id, to_db_ts(job.updated_at)),
            )
            if cursor.rowcount:
                return True
            conn.execute("UPDATE narrative_jobs SET claimed_at = NULL WHERE id = ?", (job.id,))

        counter("narratives.queue.requeued_in_flight")
        logger.info("Job for activity %s was re-enqueued while processing; keeping it", job.activity_id)
        return False

    @staticmethod
    @retry_on_db_lock()
    def release(job_id: int, error: str | None = None) -> None:
        """Give a claimed job back to the queue, recording why it failed."""
        with db_transaction() as conn:
            conn.execute(
                "UPDATE narrative_jobs SET claimed_at = NULL, last_error = ? WHERE id = ?",
                (error, job_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def delete(job_id: int) -> None:
        with db_transaction() as conn:
            conn.execute("DELETE FROM narrative_jobs WHERE id = ?", (job_id,))

    @staticmethod
    def get(activity_id: str) -> NarrativeJob | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM narrative_jobs WHERE activity_id = ?", (activity_id,)
            ).fetchone()
        return NarrativeJob.from_db_row(dict(row)) if row else None

    @staticmethod
    def count() -> int:
        with get_db_connection() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM narrative_jobs").fetchone()[0])


def _on_evidence_set_changed(event: EvidenceSetChanged) -> None:
    NarrativeJobQueue.enqueue(event.activity_id, event.project_id, PRIORITY_DEFAULT)


def subscribe_narrative_queue(bus: EventBus) -> None:
    """Enqueue a regeneration job whenever an activity's evidence set changes."""
    bus.subscribe(EvidenceSetChanged, _on_evidence_set_changed)
