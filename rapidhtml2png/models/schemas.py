"""
Pydantic Models and Schemas
===========================

Core data models for render requests, pipeline state and API responses.
Internal pipeline records are frozen: they are handed between stages and
across concurrent waiters and must never change after construction.
"""

from typing import Optional, List, Dict, Any, Literal
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class AspectClass(str, Enum):
    """Canvas shape classification, used for reporting only."""

    WIDE = "wide"
    TALL = "tall"
    BALANCED = "balanced"


class EngineFidelity(str, Enum):
    """Rendering backend fidelity tiers."""

    HIGH = "high"
    BASIC = "basic"


# Request Models
class RenderRequest(BaseModel):
    """Request model for HTML to PNG conversion."""

    html_blocks: List[str] = Field(
        ..., min_length=1, description="Ordered HTML fragments, concatenated before sanitizing"
    )
    css_url: Optional[str] = Field(None, description="External stylesheet URL (http/https)")
    css: Optional[str] = Field(None, description="Inline CSS applied after the external sheet")

    @field_validator("html_blocks", mode="before")
    @classmethod
    def coerce_single_block(cls, v: Any) -> Any:
        """Accept a single string as a one-block request."""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("html_blocks")
    @classmethod
    def validate_html_blocks(cls, v: List[str]) -> List[str]:
        """Validate that no block is blank."""
        for index, block in enumerate(v):
            if not block.strip():
                raise ValueError(f"html_blocks[{index}] cannot be empty")
        return v

    @field_validator("css_url")
    @classmethod
    def validate_css_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the stylesheet URL scheme."""
        if v is None or v == "":
            return None
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https"):
            raise ValueError("css_url must use http or https scheme")
        if not parsed.netloc:
            raise ValueError("css_url must be a valid URL")
        return v


class SanitizedContent(BaseModel):
    """Sanitized HTML and the CSS text actually used for one request."""

    model_config = ConfigDict(frozen=True)

    html: str = Field(..., description="HTML free of script-executing constructs")
    css: str = Field("", description="Resolved CSS text")


# Cache Models
class CacheEntry(BaseModel):
    """A published PNG artifact."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str = Field(..., description="Content fingerprint and filename stem")
    path: Path = Field(..., description="Artifact path")
    file_size: int = Field(..., gt=0, description="File size in bytes")
    created_at: datetime = Field(..., description="Publication time")


# Engine Models
class EngineCapability(BaseModel):
    """Result of probing one rendering backend."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Engine name")
    available: bool = Field(..., description="Whether the engine can render")
    version: Optional[str] = Field(None, description="Engine version")
    reason: Optional[str] = Field(None, description="Why the engine is unavailable")
    fidelity: EngineFidelity = Field(EngineFidelity.BASIC, description="Fidelity tier")


# Rendering Models
class RenderPlan(BaseModel):
    """Everything a backend needs for one render."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0, description="Canvas width in pixels")
    height: int = Field(..., gt=0, description="Canvas height in pixels")
    engine: str = Field(..., description="Engine chosen for the render")
    content: SanitizedContent = Field(..., description="Content to render")
    aspect: AspectClass = Field(AspectClass.BALANCED, description="Derived aspect class")


class RenderResult(BaseModel):
    """Outcome of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="Whether an artifact is available")
    content_hash: Optional[str] = Field(None, description="Content fingerprint")
    output_path: Optional[Path] = Field(None, description="Artifact path")
    file_size: Optional[int] = Field(None, description="Artifact size in bytes")
    cached: bool = Field(False, description="Served from an existing artifact")
    engine: Optional[str] = Field(None, description="Engine that produced the artifact")
    width: Optional[int] = Field(None, description="Planned canvas width")
    height: Optional[int] = Field(None, description="Planned canvas height")
    aspect: Optional[AspectClass] = Field(None, description="Planned aspect class")
    error: Optional[str] = Field(None, description="Non-secret error message")
    css_loaded: bool = Field(False, description="Whether any CSS was applied")
    error_code: Optional[str] = Field(None, description="Error code")


# API Response Models
class RenderingInfo(BaseModel):
    """Rendering section of the conversion response."""

    success: bool = Field(..., description="Whether rendering succeeded")
    cached: bool = Field(False, description="Served from cache")
    engine: Optional[str] = Field(None, description="Engine used")
    output_file: Optional[str] = Field(None, description="Artifact path")
    file_size: Optional[int] = Field(None, description="Artifact size in bytes")
    width: Optional[int] = Field(None, description="Canvas width")
    height: Optional[int] = Field(None, description="Canvas height")
    error: Optional[str] = Field(None, description="Error message if failed")

    @classmethod
    def from_result(cls, result: RenderResult) -> "RenderingInfo":
        return cls(
            success=result.success,
            cached=result.cached,
            engine=result.engine,
            output_file=str(result.output_path) if result.output_path else None,
            file_size=result.file_size,
            width=result.width,
            height=result.height,
            error=result.error,
        )


class ConvertData(BaseModel):
    """Data section of the conversion response."""

    content_hash: Optional[str] = Field(None, description="Content fingerprint")
    html_blocks_count: int = Field(..., ge=1, description="Number of HTML blocks received")
    css_loaded: bool = Field(False, description="Whether any CSS was applied")
    aspect: Optional[AspectClass] = Field(None, description="Canvas aspect class")
    rendering: RenderingInfo = Field(..., description="Rendering outcome")


class ConvertResponse(BaseModel):
    """Response model for HTML to PNG conversion."""

    success: bool = Field(..., description="Whether conversion succeeded")
    message: str = Field("OK", description="Status message")
    timestamp: datetime = Field(default_factory=_utcnow, description="Response timestamp")
    data: ConvertData = Field(..., description="Conversion data")


class HealthStatus(BaseModel):
    """Health check status."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    version: str = Field(..., description="Application version")
    engines: Dict[str, EngineCapability] = Field(
        default_factory=dict, description="Engine capability table"
    )
    selected_engine: Optional[str] = Field(None, description="Preferred available engine")


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    data: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=_utcnow, description="Error timestamp")
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")
