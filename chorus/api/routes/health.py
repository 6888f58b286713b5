"""Health check API routes."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from chorus import __version__
from chorus.core.config import get_settings


router = APIRouter(prefix="/health", tags=["Health"])


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class HealthResponse(BaseModel):
    """Response model for health check.

    Attributes:
        status: Overall service status
        service: Service name
        version: Service version
        timestamp: Check timestamp (ISO format)
        uptime_seconds: Service uptime in seconds
        models: Registered respondent models, None before startup
        active_turns: Turns currently running
    """

    status: HealthStatus = Field(default=HealthStatus.HEALTHY)
    service: str
    version: str = Field(default=__version__)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    uptime_seconds: float | None = None
    models: int | None = None
    active_turns: int = 0


# =============================================================================
# Service Start Time
# =============================================================================

_service_start_time: datetime | None = None


def set_service_start_time(start_time: datetime | None = None) -> None:
    global _service_start_time
    _service_start_time = start_time or datetime.now(UTC)


def get_uptime_seconds() -> float | None:
    if _service_start_time is None:
        return None
    return (datetime.now(UTC) - _service_start_time).total_seconds()


@router.get("", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Degraded until an orchestrator with at least one model is wired."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        return HealthResponse(
            status=HealthStatus.DEGRADED,
            service=get_settings().service_name,
            uptime_seconds=get_uptime_seconds(),
        )

    models = len(orchestrator.registry)
    return HealthResponse(
        status=HealthStatus.HEALTHY if models else HealthStatus.DEGRADED,
        service=get_settings().service_name,
        uptime_seconds=get_uptime_seconds(),
        models=models,
        active_turns=orchestrator.active_turn_count(),
    )
