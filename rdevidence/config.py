"""Centralized configuration for the evidence pipeline.

Re-exports everything from rdevidence.infrastructure.settings, then adds
typed constants for the database, LLM calls, the linking pipeline and the
narrative queue. Environment overrides use safe defaults so a scheduled run
works without extra configuration.
"""

from __future__ import annotations

import os

from rdevidence.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "0.1.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("RDEVIDENCE_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("RDEVIDENCE_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("RDEVIDENCE_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("RDEVIDENCE_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("RDEVIDENCE_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("RDEVIDENCE_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("RDEVIDENCE_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("RDEVIDENCE_DB_RETRY_JITTER", "0.1"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: int = int(os.getenv("RDEVIDENCE_LLM_TIMEOUT", "15"))
LLM_MAX_RETRIES: int = int(os.getenv("RDEVIDENCE_LLM_MAX_RETRIES", "3"))
LLM_MAX_WORKERS: int = int(os.getenv("RDEVIDENCE_LLM_MAX_WORKERS", "4"))

# --- Linking pipeline ---
LINK_MAX_ITEMS_PER_RUN: int = 25
LINK_MAX_ITEMS_PER_DAY_PER_PROJECT: int = 100
LINK_EVIDENCE_SCAN_LIMIT: int = 100
LINK_RECENCY_WINDOW_DAYS: int = 60
LINK_ACTIVITY_BACKFILL_DAYS: int = 14
LINK_SUCCESS_COOLDOWN_HOURS: int = 24
LINK_RETRY_COOLDOWN_HOURS: int = 1
LINK_MIN_CONTENT_LENGTH: int = 20
LINK_RULE_SCORE_THRESHOLD: float = 0.10
LINK_TOP_TERMS: int = 5
LINK_PROMPT_TERMS: int = 3
LINK_SNIPPET_MAX_CHARS: int = 200
LINK_REASON_MAX_CHARS: int = 110
LINK_ACTIVITY_NAME_MAX_CHARS: int = 50
LINK_UNCERTAINTY_MAX_WORDS: int = 35
LINK_HYPOTHESIS_MAX_WORDS: int = 35
LINK_DIAGNOSTICS_LIMIT: int = 20

# --- Narrative queue ---
NARRATIVE_BATCH_SIZE: int = 10
NARRATIVE_MAX_SNIPPETS_PER_STEP: int = 3
NARRATIVE_SNIPPET_MAX_CHARS: int = 180
NARRATIVE_HYPOTHESIS_MAX_WORDS: int = 35
NARRATIVE_ACTIVITY_NAME_MAX_WORDS: int = 5
NARRATIVE_UNCERTAINTY_MAX_WORDS: int = 35
NARRATIVE_DAILY_SNIPPET_CAP_PER_PROJECT: int = 80
NARRATIVE_SNIPPETS_PER_GENERATION: int = 9
NARRATIVE_MIN_EVIDENCE_ITEMS: int = 3
NARRATIVE_MIN_DISTINCT_STEPS: int = 2
NARRATIVE_HASH_HYPOTHESIS_CHARS: int = 200
NARRATIVE_REGEN_COOLDOWN_HOURS: int = 6
NARRATIVE_JOB_CLAIM_TTL_MINUTES: int = int(os.getenv("RDEVIDENCE_JOB_CLAIM_TTL", "15"))
NARRATIVE_PLACEHOLDER_TEXT: str = "Not enough evidence to summarize yet."

# --- Budget windows ---
BUDGET_WINDOW_HOURS: int = 24
