"""
Repositories for projects, core activities and evidence.

Follows the database patterns in rdevidence/infrastructure/database.py:
static methods, pooled connections, writes inside db_transaction().
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from rdevidence.evidence.models import (
    CoreActivity,
    EvidenceItem,
    LinkSource,
    Project,
    SystematicStep,
)
from rdevidence.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from rdevidence.observability.logging import get_logger
from rdevidence.utils.timestamps import to_db_ts, utc_now

logger = get_logger(__name__)

# Never overwrite a link a person made
_NOT_MANUAL = "(link_source IS NULL OR link_source <> 'manual')"


@dataclass(frozen=True)
class AutoLinkWrite:
    evidence_id: str
    activity_id: str
    reason: str | None
    content_hash: str | None


@dataclass(frozen=True)
class AttemptWrite:
    evidence_id: str
    content_hash: str | None


class ProjectRepository:
    @staticmethod
    @retry_on_db_lock()
    def create(
        current_hypothesis: str | None = None,
        name: str = "",
        project_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Project:
        project = Project(
            id=project_id or str(uuid.uuid4()),
            name=name,
            current_hypothesis=current_hypothesis,
            created_at=created_at or utc_now(),
        )
        with db_transaction() as conn:
            conn.execute(
                "INSERT INTO projects (id, name, current_hypothesis, created_at) VALUES (?, ?, ?, ?)",
                (project.id, project.name, project.current_hypothesis, to_db_ts(project.created_at)),
            )
        return project

    @staticmethod
    def get_by_id(project_id: str) -> Project | None:
        """Get a non-deleted project."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE id = ? AND deleted_at IS NULL",
                (project_id,),
            ).fetchone()
        return Project.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_active() -> list[Project]:
        with get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE deleted_at IS NULL ORDER BY created_at ASC"
            ).fetchall()
        return [Project.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def update_hypothesis(project_id: str, hypothesis: str | None) -> None:
        with db_transaction() as conn:
            conn.execute(
                "UPDATE projects SET current_hypothesis = ? WHERE id = ?",
                (hypothesis, project_id),
            )


class ActivityRepository:
    @staticmethod
    @retry_on_db_lock()
    def create(
        project_id: str,
        name: str,
        uncertainty: str = "",
        activity_id: str | None = None,
        created_at: datetime | None = None,
    ) -> CoreActivity:
        activity = CoreActivity(
            id=activity_id or str(uuid.uuid4()),
            project_id=project_id,
            name=name,
            uncertainty=uncertainty,
            created_at=created_at or utc_now(),
        )
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO core_activities (id, project_id, name, uncertainty, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    activity.id,
                    activity.project_id,
                    activity.name,
                    activity.uncertainty,
                    to_db_ts(activity.created_at),
                ),
            )
        return activity

    @staticmethod
    def get_by_id(activity_id: str) -> CoreActivity | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM core_activities WHERE id = ?", (activity_id,)
            ).fetchone()
        return CoreActivity.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_for_project(project_id: str) -> list[CoreActivity]:
        """Activities of a project, oldest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM core_activities WHERE project_id = ? ORDER BY created_at ASC",
                (project_id,),
            ).fetchall()
        return [CoreActivity.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def update_text(activity_id: str, name: str | None = None, uncertainty: str | None = None) -> None:
        with db_transaction() as conn:
            if name is not None:
                conn.execute("UPDATE core_activities SET name = ? WHERE id = ?", (name, activity_id))
            if uncertainty is not None:
                conn.execute(
                    "UPDATE core_activities SET uncertainty = ? WHERE id = ?",
                    (uncertainty, activity_id),
                )


class EvidenceRepository:
    """
    Evidence reads for both pipelines and the link-field writes.

    Content is written once by create(); every later write touches link
    fields only, and auto writes are guarded against manual links in SQL.
    """

    @staticmethod
    @retry_on_db_lock()
    def create(
        project_id: str,
        content: str | None,
        systematic_step: SystematicStep = SystematicStep.UNKNOWN,
        source: str = "note",
        file_url: str | None = None,
        created_at: datetime | None = None,
        evidence_id: str | None = None,
    ) -> EvidenceItem:
        item = EvidenceItem(
            id=evidence_id or str(uuid.uuid4()),
            project_id=project_id,
            content=content,
            source=source,
            file_url=file_url,
            systematic_step=systematic_step,
            created_at=created_at or utc_now(),
        )
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO evidence (
                    id, project_id, content, source, file_url,
                    systematic_step_primary, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.project_id,
                    item.content,
                    item.source,
                    item.file_url,
                    item.systematic_step.value,
                    to_db_ts(item.created_at),
                ),
            )
        return item

    @staticmethod
    def get_by_id(evidence_id: str) -> EvidenceItem | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM evidence WHERE id = ?", (evidence_id,)).fetchone()
        return EvidenceItem.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_for_project(
        project_id: str,
        evidence_ids: Sequence[str] | None = None,
        limit: int = 100,
        include_deleted: bool = True,
    ) -> list[EvidenceItem]:
        """Newest-first evidence of a project, optionally restricted to ids."""
        clauses = ["project_id = ?"]
        params: list[object] = [project_id]

        if evidence_ids:
            placeholders = ",".join("?" * len(evidence_ids))
            clauses.append(f"id IN ({placeholders})")
            params.extend(evidence_ids)
        if not include_deleted:
            clauses.append("soft_deleted = 0")

        params.append(limit)
        with get_db_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM evidence
                WHERE {" AND ".join(clauses)}
                ORDER BY created_at DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [EvidenceItem.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def list_linked(activity_id: str) -> list[EvidenceItem]:
        """Every non-deleted evidence item currently linked to an activity, newest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM evidence
                WHERE linked_activity_id = ? AND soft_deleted = 0
                ORDER BY created_at DESC
                """,
                (activity_id,),
            ).fetchall()
        return [EvidenceItem.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def apply_link_outcomes(
        links: Sequence[AutoLinkWrite],
        attempts: Sequence[AttemptWrite],
        now: datetime,
    ) -> int:
        """
        Persist one linking round in a single transaction.

        Accepted links get the full link fields; every other processed item
        gets its attempt timestamp and content hash only.

        Returns:
            Number of evidence rows that received a link

        Side Effects:
            - Updates evidence rows (never rows with link_source='manual')
            - Commits transaction
        """
        ts = to_db_ts(now)
        linked = 0
        with db_transaction() as conn:
            for link in links:
                cursor = conn.execute(
                    f"""
                    UPDATE evidence SET
                        linked_activity_id = ?,
                        link_source = ?,
                        link_reason = ?,
                        link_updated_at = ?,
                        link_attempted_at = ?,
                        content_hash = ?
                    WHERE id = ? AND {_NOT_MANUAL}
                    """,
                    (
                        link.activity_id,
                        LinkSource.AUTO.value,
                        link.reason,
                        ts,
                        ts,
                        link.content_hash,
                        link.evidence_id,
                    ),
                )
                if cursor.rowcount:
                    linked += 1
                else:
                    logger.warning("Auto-link skipped for %s (manual link or missing row)", link.evidence_id)

            for attempt in attempts:
                conn.execute(
                    f"""
                    UPDATE evidence SET link_attempted_at = ?, content_hash = ?
                    WHERE id = ? AND {_NOT_MANUAL}
                    """,
                    (ts, attempt.content_hash, attempt.evidence_id),
                )
        return linked

    @staticmethod
    @retry_on_db_lock()
    def mark_attempted(evidence_ids: Sequence[str], now: datetime) -> None:
        """Bump link_attempted_at only (classifier failure path)."""
        if not evidence_ids:
            return
        ts = to_db_ts(now)
        with db_transaction() as conn:
            conn.executemany(
                f"UPDATE evidence SET link_attempted_at = ? WHERE id = ? AND {_NOT_MANUAL}",
                [(ts, evidence_id) for evidence_id in evidence_ids],
            )

    @staticmethod
    @retry_on_db_lock()
    def set_manual_link(evidence_id: str, activity_id: str | None, now: datetime | None = None) -> bool:
        """
        Record a person's link (or unlink) decision; locks the item against auto-linking.

        Returns:
            True if the evidence row exists
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE evidence SET
                    linked_activity_id = ?,
                    link_source = ?,
                    link_reason = NULL,
                    link_updated_at = ?
                WHERE id = ?
                """,
                (activity_id, LinkSource.MANUAL.value, to_db_ts(now or utc_now()), evidence_id),
            )
        return cursor.rowcount > 0

    @staticmethod
    @retry_on_db_lock()
    def soft_delete(evidence_id: str) -> None:
        with db_transaction() as conn:
            conn.execute("UPDATE evidence SET soft_deleted = 1 WHERE id = ?", (evidence_id,))

    @staticmethod
    def link_summary(project_id: str) -> dict[str, int]:
        """Link counts over a project's non-deleted evidence."""
        with get_db_connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(linked_activity_id IS NOT NULL), 0) AS linked,
                    COALESCE(SUM(linked_activity_id IS NOT NULL AND link_source = 'manual'), 0) AS manual
                FROM evidence
                WHERE project_id = ? AND soft_deleted = 0
                """,
                (project_id,),
            ).fetchone()
        total, linked, manual = int(row["total"]), int(row["linked"]), int(row["manual"])
        return {
            "total_evidence": total,
            "linked": linked,
            "linked_auto": linked - manual,
            "linked_manual": manual,
            "unlinked": total - linked,
        }
