"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sentinel.api.deps import get_services
from sentinel.services import Services

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def ready(services: Services = Depends(get_services)) -> Any:
    report = await services.health_check()
    if report["status"] != "ready":
        return JSONResponse(status_code=503, content=report)
    return report
