"""Administrative routes for PrepMint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from prepmint.api.dependencies import get_app_settings, get_backend
from prepmint.core.config import Settings
from prepmint.core.metrics import metrics_response
from prepmint.store.backends.base import Backend

router = APIRouter()


@router.get("/backend", summary="Describe the configured storage backend")
async def backend_info(
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, object]:
    return {
        "name": backend.name,
        "search_mode": backend.search_mode,
        "realtime": backend.supports_realtime,
        "exact_count": backend.exact_count,
        "page_size": settings.page_size,
    }


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
