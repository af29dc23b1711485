"""
Render Pipeline Errors
======================

Exception taxonomy for the render pipeline.

Every error carries a ``user_message`` that is safe to return to a caller.
The exception text itself may include internal detail (engine output, file
system paths) and is only ever written to redacted server-side logs.
"""

from typing import Optional


class RapidHTML2PNGError(Exception):
    """Base class for all pipeline errors."""

    error_code = "INTERNAL_ERROR"
    default_user_message = "HTML to PNG conversion failed"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class InvalidInput(RapidHTML2PNGError):
    """The request is empty, malformed or over the size limits."""

    error_code = "INVALID_INPUT"
    default_user_message = "Invalid request"

    def __init__(self, message: str, details: Optional[dict] = None):
        # Validation messages describe the caller's own input, so they are shown as-is
        super().__init__(message, user_message=message)
        self.details = details or {}


class SanitizationAnomaly(RapidHTML2PNGError):
    """The sanitizer hit input it could not parse and fell back to escaping it."""

    error_code = "SANITIZATION_ANOMALY"


class NoEngineAvailable(RapidHTML2PNGError):
    """No rendering backend is usable in this process."""

    error_code = "NO_ENGINE_AVAILABLE"
    default_user_message = "No rendering engine is available"


class EngineRenderError(RapidHTML2PNGError):
    """A rendering backend failed to produce an image."""

    error_code = "RENDER_ERROR"
    default_user_message = "Rendering failed"

    def __init__(self, engine: str, message: str, kind: str = "render_failed"):
        super().__init__(f"{engine}: {message}")
        self.engine = engine
        self.kind = kind


class ExternalResourceFetchError(RapidHTML2PNGError):
    """An external stylesheet could not be fetched."""

    error_code = "CSS_FETCH_ERROR"
    default_user_message = "External CSS could not be loaded"

    def __init__(self, url: str, message: str, timed_out: bool = False):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.timed_out = timed_out


class CacheWriteError(RapidHTML2PNGError):
    """A rendered artifact could not be durably published."""

    error_code = "CACHE_WRITE_ERROR"
    default_user_message = "Rendered image could not be stored"


class RenderTimeout(RapidHTML2PNGError):
    """A backend call exceeded the configured timeout."""

    error_code = "RENDER_TIMEOUT"
    default_user_message = "Rendering timed out"

    def __init__(self, engine: str, timeout: float):
        super().__init__(f"{engine} exceeded {timeout:g}s render timeout")
        self.engine = engine
        self.timeout = timeout
