"""
Database schema initialization for the evidence pipeline.

Five tables: projects, core_activities, evidence (the linking pipeline's
working set), narrative_jobs (queue, unique per activity) and
activity_narratives (cache, unique per activity).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from rdevidence.observability.logging import get_logger

logger = get_logger(__name__)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Args:
        db_path: Path to the database file

    Side Effects:
    - Creates tables and indexes if they don't exist
    - Creates the parent directory if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            current_hypothesis TEXT,
            created_at TEXT NOT NULL,
            deleted_at TEXT
        );

        CREATE TABLE IF NOT EXISTS core_activities (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            name TEXT NOT NULL,
            uncertainty TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS evidence (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id),
            content TEXT,
            source TEXT NOT NULL DEFAULT 'note',
            file_url TEXT,
            systematic_step_primary TEXT NOT NULL DEFAULT 'Unknown',
            created_at TEXT NOT NULL,
            soft_deleted INTEGER NOT NULL DEFAULT 0,
            linked_activity_id TEXT REFERENCES core_activities(id),
            link_source TEXT CHECK (link_source IN ('manual', 'auto')),
            link_reason TEXT,
            link_updated_at TEXT,
            link_attempted_at TEXT,
            content_hash TEXT
        );

        CREATE TABLE IF NOT EXISTS narrative_jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id TEXT NOT NULL UNIQUE,
            project_id TEXT NOT NULL,
            priority INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            claimed_at TEXT,
            last_error TEXT
        );

        CREATE TABLE IF NOT EXISTS activity_narratives (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id TEXT NOT NULL UNIQUE,
            text TEXT NOT NULL,
            confidence TEXT NOT NULL CHECK (confidence IN ('high', 'low')),
            missing_steps TEXT NOT NULL DEFAULT '[]',
            generated_at TEXT NOT NULL,
            input_hash TEXT NOT NULL,
            snippet_count INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL DEFAULT 1
        );

        CREATE INDEX IF NOT EXISTS idx_core_activities_project
        ON core_activities(project_id, created_at);

        CREATE INDEX IF NOT EXISTS idx_evidence_project_created
        ON evidence(project_id, created_at);

        CREATE INDEX IF NOT EXISTS idx_evidence_project_attempted
        ON evidence(project_id, link_attempted_at);

        CREATE INDEX IF NOT EXISTS idx_evidence_linked_step
        ON evidence(linked_activity_id, systematic_step_primary, created_at);

        CREATE INDEX IF NOT EXISTS idx_narrative_jobs_order
        ON narrative_jobs(priority DESC, created_at ASC);

        CREATE INDEX IF NOT EXISTS idx_activity_narratives_generated
        ON activity_narratives(generated_at);
    """)

    conn.commit()
    conn.close()
    logger.info("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Args:
        conn: Active database connection

    Returns:
        True if valid

    Raises:
        ValueError: If tables or columns are missing
    """
    required_tables = {
        "projects": ["id", "current_hypothesis", "deleted_at"],
        "core_activities": ["id", "project_id", "name", "uncertainty", "created_at"],
        "evidence": [
            "id",
            "project_id",
            "content",
            "linked_activity_id",
            "link_source",
            "link_attempted_at",
            "content_hash",
        ],
        "narrative_jobs": ["activity_id", "project_id", "priority", "claimed_at"],
        "activity_narratives": ["activity_id", "text", "input_hash", "version"],
    }

    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables.keys()) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Identifiers cannot be parameterized; names come from the dict above
        if not table.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table}")

        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}
        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table {table} missing columns: {missing_cols}")

    return True
