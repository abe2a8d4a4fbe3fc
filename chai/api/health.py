"""Health endpoint."""

from __future__ import annotations

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chai.api.schemas import HealthResponse
from chai.store import store

router = APIRouter(tags=["health"])
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health():
    """Report whether the database is reachable."""
    try:
        store.ping()
    except Exception:
        logger.exception("Health check failed")
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="error", error="database unavailable").model_dump(),
        )
    return HealthResponse(status="ok")
