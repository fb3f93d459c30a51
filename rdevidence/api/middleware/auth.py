"""Shared-secret authentication for scheduler-triggered endpoints"""

from __future__ import annotations

import os
import secrets

from fastapi import Header, HTTPException, status

from rdevidence.infrastructure.settings import is_production
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter

logger = get_logger(__name__)


class CronSecretAuth:
    """
    Bearer-token check against CRON_SECRET.

    Without a configured secret, requests are allowed in development and
    refused in production. The secret is read per request so a rotated
    value takes effect without a restart.
    """

    def verify(self, authorization: str | None = Header(None)) -> bool:
        """
        Verify the scheduler's bearer token.

        Expected format: "Bearer {CRON_SECRET}"
        """
        secret = os.getenv("CRON_SECRET")
        if not secret:
            if is_production():
                logger.error("CRON_SECRET not configured - refusing scheduler request in production")
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
            logger.warning("CRON_SECRET not configured - allowing request in development mode")
            return True

        if not authorization:
            counter("api.auth.missing")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            counter("api.auth.malformed")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )

        # Timing-safe comparison
        if not secrets.compare_digest(token.encode(), secret.encode()):
            counter("api.auth.rejected")
            logger.warning("Rejected scheduler request with invalid token")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        return True


# Global auth instance
auth = CronSecretAuth()


def require_cron_secret(authorization: str | None = Header(None)) -> bool:
    """
    Dependency for endpoints triggered by the scheduler.

    Usage:
        @router.post("/api/cron/auto-link")
        def auto_link(authenticated: bool = Depends(require_cron_secret)):
            ...
    """
    return auth.verify(authorization)
