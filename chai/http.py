"""HTTP middleware, error envelope helpers and exception handlers."""

from __future__ import annotations

import time
import uuid
from typing import NoReturn

import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chai.errors import (
    ChaiError,
    SessionBusyError,
    SessionNotFoundError,
    ValidationError,
)
from chai.models import ErrorDetail, ErrorResponse

logger = structlog.get_logger(__name__)

_CODE_MAP = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "INVALID_STATE",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


async def request_logging_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    start_time = time.monotonic()
    logger.info("Request started")
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = (time.monotonic() - start_time) * 1000
        logger.exception("Request failed", duration_ms=round(duration_ms, 2))
        structlog.contextvars.clear_contextvars()
        raise
    duration_ms = (time.monotonic() - start_time) * 1000
    logger.info(
        "Request completed",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    structlog.contextvars.clear_contextvars()
    return response


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    code = _CODE_MAP.get(exc.status_code, "INTERNAL_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": code,
                "message": str(exc.detail),
                "details": None,
            }
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and parameters are client errors (400)."""
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": _jsonable_errors(exc.errors()),
            }
        },
    )


def _jsonable_errors(errors) -> list[dict]:
    # pydantic error contexts may carry exception objects
    cleaned = []
    for error in errors:
        item = {k: v for k, v in dict(error).items() if k in ("loc", "msg", "type")}
        if "loc" in item:
            item["loc"] = list(item["loc"])
        cleaned.append(item)
    return cleaned


def raise_http_error(code: str, message: str, status_code: int) -> NoReturn:
    """Raise an HTTPException with a structured error payload.

    Args:
        code: Stable error code string.
        message: Human-readable error message.
        status_code: HTTP status to return.
    """
    raise HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error=ErrorDetail(code=code, message=message, details=None)
        ).model_dump(),
    )


def raise_for_error(exc: ChaiError) -> NoReturn:
    """Translate a domain exception into the matching HTTP error."""
    if isinstance(exc, ValidationError):
        raise_http_error("VALIDATION_ERROR", str(exc), 400)
    if isinstance(exc, SessionNotFoundError):
        raise_http_error("NOT_FOUND", "Session not found", 404)
    if isinstance(exc, SessionBusyError):
        raise_http_error("SESSION_BUSY", "Session is already streaming", 409)
    raise_http_error("INTERNAL_ERROR", str(exc), 500)
