from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.core.http_hardening import request_id

_LOG = logging.getLogger("app.errors")


class AppError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed client-supplied query controls. Never retried."""

    status_code = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class StoreUnavailable(AppError):
    status_code = 503


class StoreTimeout(StoreUnavailable):
    """The store did not answer within its deadline; idempotent reads may be retried by the caller."""

    status_code = 504
    retryable = True


def error_payload(message: str) -> dict:
    return {"success": False, "error": message}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            _LOG.warning(
                "%s %s failed: %s retryable=%s request_id=%s",
                request.method,
                request.url.path,
                exc.message,
                exc.retryable,
                request_id(request),
            )
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc.message), headers=headers)

    @app.exception_handler(HTTPException)
    async def _http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError):
        messages = []
        for item in exc.errors():
            loc = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
            messages.append(f"{loc}: {item.get('msg')}" if loc else str(item.get("msg")))
        return JSONResponse(status_code=400, content=error_payload("; ".join(messages) or "Invalid request"))
