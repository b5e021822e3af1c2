"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.schemas import HealthResponse
from services.telemetry import TelemetryService, build_default_service

router = APIRouter()


def get_service() -> TelemetryService:
    return build_default_service()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Report whether both event streams are being consumed.",
)
async def health(service: TelemetryService = Depends(get_service)) -> HealthResponse:
    ingestion_running = service.driver.running
    change_log_running = service.index.running
    return HealthResponse(
        status="ok" if ingestion_running and change_log_running else "degraded",
        pending_changes=len(service.index),
        ingestion_running=ingestion_running,
        change_log_running=change_log_running,
    )
