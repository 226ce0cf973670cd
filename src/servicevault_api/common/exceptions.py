"""Centralized FastAPI exception handlers with structured logging."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from servicevault_api.common.logging import log_context
from servicevault_api.features.rbac.exceptions import PermissionStoreUnavailableError

_UNHANDLED_LOGGER = logging.getLogger("servicevault_api.errors")
_HTTP_LOGGER = logging.getLogger("servicevault_api.http")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected exceptions.

    Any unhandled error results in a JSON 500 response and a structured ERROR
    log including a stack trace.
    """
    _UNHANDLED_LOGGER.exception(
        "unhandled_exception",
        extra=log_context(
            path=str(request.url.path),
            method=request.method,
            exception_type=type(exc).__name__,
            detail=str(exc),
        ),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException instances.

    4xx responses are returned without logging; 5xx responses are logged at
    ERROR level.
    """
    if exc.status_code >= 500:
        _HTTP_LOGGER.error(
            "http_exception",
            extra=log_context(
                path=str(request.url.path),
                method=request.method,
                status_code=exc.status_code,
                detail=exc.detail,
            ),
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def store_unavailable_handler(
    request: Request, exc: PermissionStoreUnavailableError
) -> JSONResponse:
    """Surface permission store outages as 503 rather than a denial."""
    _HTTP_LOGGER.error(
        "rbac.store.unavailable",
        extra=log_context(
            path=str(request.url.path),
            method=request.method,
            detail=str(exc),
        ),
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Permission store unavailable"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PermissionStoreUnavailableError, store_unavailable_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "http_exception_handler",
    "register_exception_handlers",
    "store_unavailable_handler",
    "unhandled_exception_handler",
]
