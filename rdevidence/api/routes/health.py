"""Health check endpoint.

Liveness probe for the scheduler and the hosting platform.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from rdevidence.config import APP_VERSION
from rdevidence.infrastructure.database import get_pool_stats

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns service status, version, database pool usage and credential
    readiness for Gemini (presence only, no API call).
    """
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "R&D Evidence API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "database": get_pool_stats(),
        "llm": {
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
    }
