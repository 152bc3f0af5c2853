"""
Health check endpoints.

Provides liveness and readiness probes for container orchestration.
"""

from fastapi import APIRouter, HTTPException

from .config import settings
from .models import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description="Returns service health status and configuration info"
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        store=settings.STORE,
        studio_api_candidates=settings.api_candidates(),
    )


@router.get("/health/live", summary="Liveness probe")
async def liveness():
    return {"status": "alive"}


@router.get(
    "/health/ready",
    summary="Readiness probe",
    description="Checks the chat store and that a Studio API base URL answers"
)
async def readiness():
    """
    Readiness probe.

    Returns 200 if the store and the Studio API are reachable, 503 otherwise.
    """
    from . import main

    checks = {
        "store": main.get_store().health_check(),
        "studio_api": await main.make_client(None).health_check(),
    }

    if not all(checks.values()):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
