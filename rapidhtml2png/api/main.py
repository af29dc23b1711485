"""
FastAPI Application
==================

Main FastAPI application exposing the HTML to PNG render pipeline.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from rapidhtml2png.api.routes.convert import router as convert_router
from rapidhtml2png.api.routes.health import router as health_router
from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.config.settings import get_settings
from rapidhtml2png.core.errors import InvalidInput, RapidHTML2PNGError
from rapidhtml2png.core.pipeline import RenderPipeline
from rapidhtml2png.models.schemas import ErrorResponse

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting FastAPI application")

    pipeline = RenderPipeline.from_settings(get_settings())
    app.state.pipeline = pipeline

    # Probe engines up front so the selection is logged at startup
    capabilities = await pipeline.selector.detect()
    logger.info(
        "Render pipeline initialized",
        engines={name: cap.available for name, cap in capabilities.items()},
    )

    try:
        yield
    finally:
        logger.info("Shutting down FastAPI application")
        try:
            await pipeline.close()
            logger.info("Render pipeline closed")
        except Exception as e:
            logger.error("Error closing render pipeline", error=str(e))
        app.state.pipeline = None


def _request_id(request: Request) -> Any:
    return getattr(request.state, "request_id", None)


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    """Reduce pydantic errors to JSON-safe location/message pairs."""
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        errors.append({"loc": ".".join(location), "msg": str(error.get("msg", ""))})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    """Map exceptions to the standard error envelope."""
    settings = get_settings()

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        error_response = ErrorResponse(
            error=str(exc.detail),
            error_code=str(exc.status_code),
            request_id=_request_id(request),
        )
        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=error_response.request_id,
        )
        return JSONResponse(status_code=exc.status_code, content=error_response.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed requests as 400 with the first problem as the message."""
        errors = _validation_errors(exc)
        first = errors[0] if errors else {"loc": "", "msg": "Invalid request"}
        message = f"{first['loc']}: {first['msg']}" if first["loc"] else first["msg"]

        error_response = ErrorResponse(
            error=message,
            error_code=InvalidInput.error_code,
            data={"errors": errors},
            request_id=_request_id(request),
        )
        logger.warning("Request validation failed", errors=errors, request_id=error_response.request_id)
        return JSONResponse(status_code=400, content=error_response.model_dump(mode="json"))

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
        error_response = ErrorResponse(
            error=exc.user_message,
            error_code=exc.error_code,
            data=exc.details or None,
            request_id=_request_id(request),
        )
        logger.warning("Invalid input", error=str(exc), request_id=error_response.request_id)
        return JSONResponse(status_code=400, content=error_response.model_dump(mode="json"))

    @app.exception_handler(RapidHTML2PNGError)
    async def pipeline_exception_handler(request: Request, exc: RapidHTML2PNGError) -> JSONResponse:
        """Handle pipeline errors that escaped the pipeline's own reporting."""
        error_response = ErrorResponse(
            error=exc.user_message,
            error_code=exc.error_code,
            data={"message": str(exc)} if settings.debug else None,
            request_id=_request_id(request),
        )
        logger.error(
            "Pipeline error",
            error_code=exc.error_code,
            error_message=str(exc),
            request_id=error_response.request_id,
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            data={"exception": str(exc)} if settings.debug else None,
            request_id=_request_id(request),
        )
        logger.error(
            "Unhandled exception",
            exception=str(exc),
            request_id=error_response.request_id,
            exc_info=True,
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))


def create_app() -> FastAPI:
    """
    Application factory function for creating FastAPI app instance.
    Used by tests and the development server.

    Returns:
        FastAPI application instance
    """
    settings = get_settings()
    application = FastAPI(
        title="RapidHTML2PNG",
        description="Convert untrusted HTML fragments to cached PNG images",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    application.add_middleware(GZipMiddleware, minimum_size=1000)

    @application.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Any:
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(application)
    application.include_router(convert_router)
    application.include_router(health_router)

    @application.get("/", tags=["General"])
    async def root() -> Dict[str, Any]:
        """Root endpoint with basic API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs_url": "/docs" if settings.debug else None,
            "health_check": "/health",
            "endpoints": {
                "convert": "POST /convert",
                "engines": "GET /engines",
            },
        }

    return application


app = create_app()


def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "rapidhtml2png.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()
