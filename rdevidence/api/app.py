"""FastAPI server for the R&D evidence pipelines"""

from __future__ import annotations

import sqlite3
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rdevidence.api.routes.cron import router as cron_router
from rdevidence.api.routes.health import router as health_router
from rdevidence.api.routes.linking import router as linking_router
from rdevidence.api.routes.narratives import router as narratives_router
from rdevidence.config import API_HOST, API_PORT, APP_VERSION
from rdevidence.infrastructure.database import init_database
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter, log_event

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Custom validation error handler that prevents leaking internal validation logic.
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


def create_app() -> FastAPI:
    """Build the app and make sure the database schema exists."""
    app = FastAPI(title="R&D Evidence API", version=APP_VERSION)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    try:
        logger.info("Initializing database schema...")
        init_database()
        logger.info("Database initialization complete")
    except sqlite3.OperationalError as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e

    app.include_router(health_router)
    app.include_router(cron_router)
    app.include_router(linking_router)
    app.include_router(narratives_router)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "service": "R&D Evidence API",
            "version": APP_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "cron_auto_link": "/api/cron/auto-link",
                "cron_process_narratives": "/api/cron/process-narratives",
                "auto_link": "/api/evidence/auto-link",
                "auto_link_diagnostics": "/api/evidence/auto-link/diagnostics",
                "narrative": "/api/narratives/{activity_id}",
                "narrative_refresh": "/api/narratives/{activity_id}/refresh",
            },
        }

    log_event("api.startup", service="rdevidence", version=APP_VERSION)
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
