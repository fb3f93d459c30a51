"""
Daily budget accounting for the linking pipeline and the narrative queue.

Usage is never held in memory: every check counts rows stamped inside the
rolling window, so the numbers stay correct across restarts and overlapping
scheduled runs.

Budget limits:
- Linking: 100 classifier attempts per project per rolling 24h
- Narratives: 80 evidence snippets per project per rolling 24h, estimated
  as 9 snippets per generated narrative
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple

from rdevidence.config import (
    BUDGET_WINDOW_HOURS,
    LINK_MAX_ITEMS_PER_DAY_PER_PROJECT,
    NARRATIVE_DAILY_SNIPPET_CAP_PER_PROJECT,
    NARRATIVE_SNIPPETS_PER_GENERATION,
)
from rdevidence.infrastructure.database import get_db_connection, retry_on_db_lock
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter
from rdevidence.utils.timestamps import to_db_ts, utc_now

logger = get_logger(__name__)


class UsageCounter(str, Enum):
    LINK_ATTEMPTS = "link_attempts"
    NARRATIVES_GENERATED = "narratives_generated"


# Fixed queries only; the counter name never reaches SQL text
_COUNT_QUERIES: dict[UsageCounter, str] = {
    UsageCounter.LINK_ATTEMPTS: """
        SELECT COUNT(*) FROM evidence
        WHERE project_id = ? AND link_attempted_at >= ?
    """,
    # Placeholders are stored with snippet_count = 0 and cost nothing
    UsageCounter.NARRATIVES_GENERATED: """
        SELECT COUNT(*) FROM activity_narratives n
        JOIN core_activities a ON a.id = n.activity_id
        WHERE a.project_id = ? AND n.generated_at >= ? AND n.snippet_count > 0
    """,
}


class BudgetStatus(NamedTuple):
    """Current daily budget status for a project."""

    used: int
    limit: int
    is_allowed: bool
    reason: str | None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@retry_on_db_lock()
def count_since(
    usage: UsageCounter,
    project_id: str,
    window: timedelta = timedelta(hours=BUDGET_WINDOW_HOURS),
    now: datetime | None = None,
) -> int:
    """Count usage rows for a project stamped within the window ending at now."""
    since = (now or utc_now()) - window
    with get_db_connection() as conn:
        row = conn.execute(_COUNT_QUERIES[usage], (project_id, to_db_ts(since))).fetchone()
    return int(row[0])


def check_linking_budget(
    project_id: str,
    limit: int = LINK_MAX_ITEMS_PER_DAY_PER_PROJECT,
    now: datetime | None = None,
) -> BudgetStatus:
    """
    Check whether a project may send more evidence to the classifier today.

    Returns:
        BudgetStatus where used is the number of attempts in the last 24h
    """
    attempts = count_since(UsageCounter.LINK_ATTEMPTS, project_id, now=now)
    if attempts >= limit:
        counter("budget.linking.exceeded")
        logger.info("Linking budget exceeded for project %s (%d/%d)", project_id, attempts, limit)
        return BudgetStatus(attempts, limit, False, "daily_budget_exceeded")
    return BudgetStatus(attempts, limit, True, None)


def check_narrative_budget(
    project_id: str,
    limit: int = NARRATIVE_DAILY_SNIPPET_CAP_PER_PROJECT,
    now: datetime | None = None,
) -> BudgetStatus:
    """
    Check whether a project may generate more narratives today.

    Returns:
        BudgetStatus where used is the estimated snippet consumption
        (narratives generated in the last 24h x snippets per generation)
    """
    generated = count_since(UsageCounter.NARRATIVES_GENERATED, project_id, now=now)
    estimated = generated * NARRATIVE_SNIPPETS_PER_GENERATION
    if estimated >= limit:
        counter("budget.narratives.exceeded")
        logger.info("Narrative budget exceeded for project %s (%d/%d snippets)", project_id, estimated, limit)
        return BudgetStatus(estimated, limit, False, "daily_budget_exceeded")
    return BudgetStatus(estimated, limit, True, None)
