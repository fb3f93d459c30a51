"""Scheduler-triggered batch endpoints.

Each call runs one bounded batch and returns its JSON summary.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from rdevidence.api.middleware.auth import require_cron_secret
from rdevidence.linking.engine import run_sweep
from rdevidence.narratives.worker import drain_narrative_queue
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = get_logger(__name__)


@router.post("/auto-link")
def cron_auto_link(authenticated: bool = Depends(require_cron_secret)) -> JSONResponse:
    """Run the linking engine for every active project."""
    try:
        summary = run_sweep()
    except Exception as e:
        counter("api.cron.auto_link.error")
        logger.error("Auto-link sweep failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(e)},
        )

    if summary.pop("config_error", False):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False, "error": summary.get("error")},
        )
    return JSONResponse(content=summary)


@router.post("/process-narratives")
def cron_process_narratives(authenticated: bool = Depends(require_cron_secret)) -> JSONResponse:
    """Drain one batch of the narrative job queue."""
    try:
        result = drain_narrative_queue()
    except Exception as e:
        counter("api.cron.process_narratives.error")
        logger.error("Narrative drain failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(e)},
        )

    if not result.ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=result.to_dict())
    return JSONResponse(content=result.to_dict())
