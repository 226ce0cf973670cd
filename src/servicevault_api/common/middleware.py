"""Request correlation and access logging."""

from __future__ import annotations

import logging
import re
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from servicevault_api.settings import Settings

from .logging import bind_request_context, clear_request_context, log_context

REQUEST_ID_HEADER = "X-Request-ID"

_ACCESS_LOGGER = logging.getLogger("servicevault_api.access")
# Caller supplied ids end up in log lines, so only plain tokens are echoed.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
_QUIET_PATHS = frozenset({"/api/v1/health"})


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _REQUEST_ID_PATTERN.match(supplied):
        return supplied
    return uuid4().hex


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the logging context and log each request.

    The caller id is copied from the actor header as sent. Authentication
    happens later, in the route dependencies.
    """

    def __init__(self, app: ASGIApp, *, actor_header: str) -> None:
        super().__init__(app)
        self._actor_header = actor_header

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = _request_id(request)
        request.state.correlation_id = request_id
        bind_request_context(request_id)

        started = time.perf_counter()
        status_code: int | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            extra = log_context(
                method=request.method,
                path=request.url.path,
                caller=request.headers.get(self._actor_header),
                status_code=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
            )
            if status_code is None:
                # Stack trace is logged by the global exception handler.
                _ACCESS_LOGGER.error("request.failed", extra=extra)
            elif request.url.path in _QUIET_PATHS:
                _ACCESS_LOGGER.debug("request.complete", extra=extra)
            else:
                _ACCESS_LOGGER.info("request.complete", extra=extra)
            clear_request_context()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def register_middleware(app: FastAPI, settings: Settings) -> None:
    origins = list(settings.server_cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
            allow_headers=[settings.actor_header, REQUEST_ID_HEADER, "Content-Type"],
            expose_headers=[REQUEST_ID_HEADER],
        )

    app.add_middleware(AccessLogMiddleware, actor_header=settings.actor_header)


__all__ = ["AccessLogMiddleware", "REQUEST_ID_HEADER", "register_middleware"]
