"""Auto-link endpoints: on-demand run for one project, and diagnostics."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rdevidence.api.middleware.auth import require_cron_secret
from rdevidence.config import LINK_EVIDENCE_SCAN_LIMIT
from rdevidence.linking.diagnostics import ProjectNotFoundError, build_diagnostics
from rdevidence.linking.engine import LinkingEngine
from rdevidence.linking.types import RunReason
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter

router = APIRouter(prefix="/api/evidence", tags=["linking"])
logger = get_logger(__name__)


class AutoLinkRequest(BaseModel):
    project_id: str = Field(..., min_length=1)
    evidence_ids: list[str] | None = Field(default=None, max_length=LINK_EVIDENCE_SCAN_LIMIT)


_ERROR_STATUS = {
    RunReason.CLASSIFIER_NOT_CONFIGURED: status.HTTP_503_SERVICE_UNAVAILABLE,
    RunReason.PROJECT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RunReason.CLASSIFIER_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@router.post("/auto-link")
def auto_link(request: AutoLinkRequest, authenticated: bool = Depends(require_cron_secret)) -> JSONResponse:
    """Run the linking pipeline for one project (optionally a subset of evidence)."""
    try:
        result = LinkingEngine().run(request.project_id, evidence_ids=request.evidence_ids)
    except Exception as e:
        counter("api.auto_link.error")
        logger.error("Auto-link failed for project %s: %s", request.project_id, e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(e)},
        )

    body = result.to_dict()
    if not result.ok:
        body["error"] = result.errors[0]["error"] if result.errors else result.reason.value
        return JSONResponse(status_code=_ERROR_STATUS.get(result.reason, 500), content=body)
    return JSONResponse(content=body)


@router.get("/auto-link/diagnostics")
def auto_link_diagnostics(
    project_id: str = Query(..., min_length=1),
    evidence_id: str | None = Query(None),
    authenticated: bool = Depends(require_cron_secret),
) -> dict:
    """Explain, per evidence item, why it does or does not auto-link."""
    try:
        return build_diagnostics(project_id, evidence_id=evidence_id)
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found") from e
