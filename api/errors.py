"""
Error responder.

Every error leaving the API is converted here, once, into

    {"error": {"code": ..., "message": ..., "details": ...}}

Unclassified exceptions are logged with their traceback and answered with a
fixed INTERNAL_ERROR message; their text never reaches the client.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from domain.errors import AppError, ErrorKind, GENERIC_MESSAGES

logger = logging.getLogger(__name__)


def error_response(error: AppError) -> JSONResponse:
    headers = {}
    if error.kind is ErrorKind.RATE_LIMITED and error.details:
        reset = int(error.details.get("reset", 0))
        headers = {
            "X-RateLimit-Limit": str(error.details.get("limit", 0)),
            "X-RateLimit-Remaining": str(error.details.get("remaining", 0)),
            "X-RateLimit-Reset": str(reset),
            "Retry-After": str(max(0, reset - int(time.time()))),
        }
    return JSONResponse(status_code=error.status_code, content=error.to_wire(), headers=headers)


def _kind_for_http_status(status_code: int) -> ErrorKind:
    for kind in ErrorKind:
        if kind.status_code == status_code and kind is not ErrorKind.DATABASE:
            return kind
    return ErrorKind.VALIDATION if 400 <= status_code < 500 else ErrorKind.INTERNAL


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "Request failed: %s",
                exc.message,
                extra={"path": request.url.path, "code": exc.code},
            )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors: dict[str, list[str]] = {}
        for item in exc.errors():
            location = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
            errors.setdefault(".".join(location) or "body", []).append(item.get("msg", "Invalid value"))
        return error_response(AppError.validation(errors))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        kind = _kind_for_http_status(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else GENERIC_MESSAGES.get(kind, "Request failed")
        return JSONResponse(status_code=exc.status_code, content=AppError(kind, message).to_wire())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error",
            extra={"path": request.url.path, "method": request.method},
        )
        return error_response(AppError.internal())


__all__ = ["register_error_handlers", "error_response"]
