from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sqlgrep.errors.codes import ErrorCode
from sqlgrep.errors.exceptions import SqlGrepError
from sqlgrep.errors.mapper import map_error

log = logging.getLogger(__name__)


def _error_response(
    request: Request,
    *,
    status: int,
    code: str,
    message: str,
    retryable: bool,
    extra: Optional[Dict[str, Any]] = None,
    details: Optional[List[str]] = None,
) -> JSONResponse:
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    payload = {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "retryable": retryable,
            "request_id": request_id,
            "extra": extra or {},
        }
    }

    headers = {"X-Request-ID": request_id}
    if retryable:
        headers["Retry-After"] = "2"

    return JSONResponse(status_code=status, content=payload, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers for the FastAPI application."""

    @app.exception_handler(SqlGrepError)
    async def sqlgrep_error_handler(request: Request, exc: SqlGrepError) -> JSONResponse:
        status = exc.http_status
        if status >= 500:
            log.warning(
                "Request failed",
                extra={"code": exc.code.value, "path": request.url.path},
            )
        return _error_response(
            request,
            status=status,
            code=exc.code.value,
            message=exc.message,
            retryable=exc.retryable,
            extra=exc.context(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error", extra={"path": request.url.path})
        status, retryable = map_error(ErrorCode.PIPELINE_CRASH)
        return _error_response(
            request,
            status=status,
            code=ErrorCode.PIPELINE_CRASH.value,
            message="Internal error.",
            retryable=retryable,
            details=[type(exc).__name__],
        )
