"""
API Dependencies
================

FastAPI dependencies shared by the route modules.
"""

from fastapi import HTTPException, Request

from rapidhtml2png.config.settings import Settings, get_settings
from rapidhtml2png.core.pipeline import RenderPipeline


def get_pipeline(request: Request) -> RenderPipeline:
    """Get the pipeline created by the application lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Render pipeline not initialized")
    return pipeline


def get_current_settings() -> Settings:
    """Dependency to get current settings."""
    return get_settings()
