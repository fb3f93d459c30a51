"""
Narrative cache repository (activity_narratives table).

One row per activity. Every upsert replaces the content and bumps version.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime

from rdevidence.evidence.models import Confidence, SystematicStep
from rdevidence.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from rdevidence.narratives.models import ActivityNarrative
from rdevidence.utils.timestamps import to_db_ts, utc_now


class ActivityNarrativeRepository:
    @staticmethod
    @retry_on_db_lock()
    def upsert(
        activity_id: str,
        text: str,
        confidence: Confidence,
        missing_steps: Sequence[SystematicStep],
        input_hash: str,
        snippet_count: int = 0,
        generated_at: datetime | None = None,
    ) -> ActivityNarrative:
        """
        Insert or replace the cached narrative for an activity.

        Side Effects:
            - Writes one activity_narratives row (version + 1 on update)
        """
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO activity_narratives (
                    activity_id, text, confidence, missing_steps,
                    generated_at, input_hash, snippet_count, version
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(activity_id) DO UPDATE SET
                    text = excluded.text,
                    confidence = excluded.confidence,
                    missing_steps = excluded.missing_steps,
                    generated_at = excluded.generated_at,
                    input_hash = excluded.input_hash,
                    snippet_count = excluded.snippet_count,
                    version = activity_narratives.version + 1
                """,
                (
                    activity_id,
                    text,
                    confidence.value,
                    json.dumps([step.value for step in missing_steps]),
                    to_db_ts(generated_at or utc_now()),
                    input_hash,
                    snippet_count,
                ),
            )
            row = conn.execute(
                "SELECT * FROM activity_narratives WHERE activity_id = ?", (activity_id,)
            ).fetchone()
        return ActivityNarrative.from_db_row(dict(row))

    @staticmethod
    def get(activity_id: str) -> ActivityNarrative | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM activity_narratives WHERE activity_id = ?", (activity_id,)
            ).fetchone()
        return ActivityNarrative.from_db_row(dict(row)) if row else None
