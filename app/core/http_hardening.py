from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("app.http")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def _request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid4().hex


def request_id(request: Request) -> str:
    """Id assigned by the middleware, or ``-`` for requests it never saw."""
    return getattr(request.state, "request_id", None) or "-"


def _target(request: Request) -> str:
    # Filters live in the query string; keep them in the access line.
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def install_http_hardening(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_log_middleware(request: Request, call_next):
        request.state.request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        started_at = perf_counter()

        response = await call_next(request)

        for key, value in SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        # List pages change with every child write.
        response.headers["Cache-Control"] = "no-store"
        response.headers[REQUEST_ID_HEADER] = request.state.request_id

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        _LOG.log(
            level,
            "%s %s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            _target(request),
            response.status_code,
            (perf_counter() - started_at) * 1000.0,
            request.state.request_id,
        )
        return response
