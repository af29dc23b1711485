"""
Convert Routes
==============

FastAPI routes for HTML to PNG conversion.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from rapidhtml2png.api.dependencies import get_pipeline
from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.core.pipeline import RenderPipeline
from rapidhtml2png.models.schemas import (
    ConvertData,
    ConvertResponse,
    ErrorResponse,
    RenderingInfo,
    RenderRequest,
    RenderResult,
)

logger = get_logger(__name__)

router = APIRouter(tags=["Conversion"])

# Error codes that map to a gateway timeout rather than a server error
TIMEOUT_ERROR_CODES = {"RENDER_TIMEOUT"}


def failure_status(result: RenderResult) -> int:
    """HTTP status for a failed conversion."""
    return 504 if result.error_code in TIMEOUT_ERROR_CODES else 500


def build_convert_data(request: RenderRequest, result: RenderResult) -> ConvertData:
    return ConvertData(
        content_hash=result.content_hash,
        html_blocks_count=len(request.html_blocks),
        css_loaded=result.css_loaded,
        aspect=result.aspect,
        rendering=RenderingInfo.from_result(result),
    )


@router.post(
    "/convert",
    response_model=ConvertResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
@router.post("/api/v1/convert", response_model=ConvertResponse, include_in_schema=False)
async def convert(
    body: RenderRequest, request: Request, pipeline: RenderPipeline = Depends(get_pipeline)
) -> Any:
    """
    Convert HTML blocks to a PNG.

    Args:
        body: HTML blocks with optional external and inline CSS

    Returns:
        Conversion envelope; the PNG path is ``data.rendering.output_file``
    """
    logger.info(
        "Conversion requested",
        html_blocks_count=len(body.html_blocks),
        css_url=body.css_url,
        request_id=getattr(request.state, "request_id", None),
    )

    result = await pipeline.convert(body)
    data = build_convert_data(body, result)

    if result.success:
        message = "Served from cache" if result.cached else "Rendered"
        return ConvertResponse(success=True, message=message, data=data)

    error_data: Dict[str, Any] = data.model_dump(mode="json")
    error_response = ErrorResponse(
        error=result.error or "HTML to PNG conversion failed",
        error_code=result.error_code,
        data=error_data,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=failure_status(result), content=error_response.model_dump(mode="json")
    )
