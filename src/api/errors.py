"""
Exception mapping for the analytics API.

- StorageError: logged with context, generic 500 body
- NotFoundError: 404, nothing written
- Request schema errors: 400 in the same shape as component validation errors
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.components.analytics import AnalyticsValidationError, NotFoundError, StorageError

logger = logging.getLogger(__name__)


def validation_http_error(errors: list[AnalyticsValidationError]) -> HTTPException:
    """Map component validation errors to an HTTP error (429 for rate limiting)."""
    if any(e.code == "rate_limit_exceeded" for e in errors):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
        )
    if any(e.code == "ingest_disabled" for e in errors):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics ingestion is disabled",
        )

    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "ok": False,
            "errors": [
                {
                    "code": e.code,
                    "message": e.message,
                    "field": e.field_name,
                }
                for e in errors
            ],
        },
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Storage failure on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "detail": {
                "ok": False,
                "errors": [{"code": "not_found", "message": str(exc), "field": None}],
            }
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append(
            {
                "code": "invalid",
                "message": err.get("msg", "Invalid value"),
                "field": ".".join(loc) or None,
            }
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"ok": False, "errors": errors}},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
