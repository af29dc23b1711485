"""
Health Routes
=============

FastAPI routes for health check and engine detection endpoints.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from rapidhtml2png.api.dependencies import get_current_settings, get_pipeline
from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.config.settings import Settings
from rapidhtml2png.core.errors import NoEngineAvailable
from rapidhtml2png.core.pipeline import RenderPipeline
from rapidhtml2png.models.schemas import EngineCapability, HealthStatus

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


async def check_engines(pipeline: RenderPipeline) -> Dict[str, Any]:
    """
    Collect the engine capability table and the selected engine.

    Returns:
        Dictionary with ``engines`` and ``selected`` (None when nothing is usable)
    """
    capabilities = await pipeline.selector.detect()
    selected: Optional[EngineCapability]
    try:
        selected = await pipeline.selector.select()
    except NoEngineAvailable:
        selected = None
    return {"engines": capabilities, "selected": selected}


@router.get("/health", response_model=HealthStatus)
async def health_check(
    pipeline: RenderPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_current_settings),
) -> HealthStatus:
    """
    Get application health status.

    Healthy when the preferred engine is usable, degraded when only a
    lower-fidelity fallback is, unhealthy when no engine can render.
    """
    engines = await check_engines(pipeline)
    selected: Optional[EngineCapability] = engines["selected"]

    if selected is None:
        status = "unhealthy"
    elif selected.name == pipeline.selector.preference[0]:
        status = "healthy"
    else:
        status = "degraded"

    logger.info("Health check completed", status=status, selected_engine=selected and selected.name)
    return HealthStatus(
        status=status,
        version=settings.app_version,
        engines=engines["engines"],
        selected_engine=selected.name if selected else None,
    )


@router.get("/engines")
async def list_engines(pipeline: RenderPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """Get the engine detection results in preference order."""
    engines = await check_engines(pipeline)
    selected: Optional[EngineCapability] = engines["selected"]
    return {
        "preference": list(pipeline.selector.preference),
        "selected": selected.name if selected else None,
        "engines": {
            name: capability.model_dump(mode="json")
            for name, capability in engines["engines"].items()
        },
    }
