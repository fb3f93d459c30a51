"""Narrative read and refresh endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from rdevidence.api.middleware.auth import require_cron_secret
from rdevidence.narratives.service import ActivityNotFoundError, get_narrative, refresh_narrative

router = APIRouter(prefix="/api/narratives", tags=["narratives"])


@router.get("/{activity_id}")
def read_narrative(activity_id: str, authenticated: bool = Depends(require_cron_secret)) -> dict[str, Any]:
    """Cached narrative (never generates); stale narratives are re-queued."""
    return get_narrative(activity_id)


@router.post("/{activity_id}/refresh")
def refresh(
    activity_id: str,
    force: bool = Query(False),
    authenticated: bool = Depends(require_cron_secret),
) -> dict[str, Any]:
    """Queue a regeneration, subject to cooldown and budget unless forced."""
    try:
        return refresh_narrative(activity_id, force=force)
    except ActivityNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Activity not found") from e
