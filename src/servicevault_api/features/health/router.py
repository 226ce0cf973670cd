"""API routes for the health module."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter, status
from sqlalchemy.exc import SQLAlchemyError

from servicevault_api.app.dependencies import SettingsDep
from servicevault_api.common.logging import log_context
from servicevault_api.common.schema import BaseSchema
from servicevault_api.infra.db import check_database_ready

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthComponentStatus(BaseSchema):
    name: str
    status: Literal["available", "unavailable"]
    detail: str | None = None


class HealthCheckResponse(BaseSchema):
    status: Literal["ok", "degraded"]
    timestamp: datetime
    components: list[HealthComponentStatus]


@router.get(
    "",
    response_model=HealthCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Service health status",
    response_model_exclude_none=True,
)
async def read_health(settings: SettingsDep) -> HealthCheckResponse:
    """Return the current health information for the service."""

    components = [
        HealthComponentStatus(name="api", status="available", detail=f"v{settings.app_version}")
    ]
    try:
        await check_database_ready(settings)
    except SQLAlchemyError:
        components.append(HealthComponentStatus(name="database", status="unavailable"))
    else:
        components.append(HealthComponentStatus(name="database", status="available"))

    overall = "ok" if all(item.status == "available" for item in components) else "degraded"
    logger.debug("health.status", extra=log_context(status=overall))
    return HealthCheckResponse(
        status=overall,
        timestamp=datetime.now(tz=UTC),
        components=components,
    )


__all__ = ["router"]
