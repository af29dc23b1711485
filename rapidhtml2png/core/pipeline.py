"""
Render Pipeline
===============

Orchestrates one HTML to PNG conversion:

    validate -> sanitize -> resolve CSS -> fingerprint -> cache lookup
      hit:  return the published artifact
      miss: single flight -> select engine -> size -> render -> publish

Identical content renders at most once at a time; concurrent requests for the
same fingerprint share the result of the render already in progress.
"""

from typing import Any, List, Optional, Tuple
import asyncio
import os

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.config.settings import Settings, get_settings
from rapidhtml2png.core.cache.css_loader import CssLoader
from rapidhtml2png.core.cache.fingerprint import fingerprint
from rapidhtml2png.core.cache.store import CacheStore
from rapidhtml2png.core.errors import (
    EngineRenderError,
    ExternalResourceFetchError,
    InvalidInput,
    NoEngineAvailable,
    RapidHTML2PNGError,
    RenderTimeout,
)
from rapidhtml2png.core.rendering.base import PNG_SIGNATURE, BaseRenderer
from rapidhtml2png.core.rendering.engines import EngineSelector, create_default_renderers
from rapidhtml2png.core.rendering.sizer import classify_aspect, compute_size
from rapidhtml2png.core.security.sanitizer import sanitize, sanitize_with_report
from rapidhtml2png.core.singleflight import SingleFlight
from rapidhtml2png.models.schemas import RenderPlan, RenderRequest, RenderResult, SanitizedContent

logger = get_logger(__name__)

# One attempt on the preferred engine plus one retry on the next
MAX_ENGINE_ATTEMPTS = 2

# Reported as the engine of a result served from an existing artifact
CACHE_ENGINE = "cache"


class RenderPipeline:
    """HTML to PNG conversion with content-addressed caching."""

    def __init__(
        self,
        store: CacheStore,
        selector: EngineSelector,
        css_loader: Optional[CssLoader] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.selector = selector
        self.css_loader = css_loader
        self.logger: Any = logger.bind(component="render_pipeline")

        concurrency = self.settings.render_concurrency or os.cpu_count() or 1
        self._render_slots = asyncio.Semaphore(concurrency)
        self._flights: SingleFlight[RenderResult] = SingleFlight()
        self.render_count = 0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RenderPipeline":
        """Build a pipeline with the default store, renderers and CSS loader."""
        settings = settings or get_settings()
        return cls(
            store=CacheStore(settings.media_root),
            selector=EngineSelector(create_default_renderers()),
            css_loader=CssLoader(),
            settings=settings,
        )

    async def close(self) -> None:
        """Wait for detached renders, then release engines and HTTP sessions."""
        await self._flights.drain()
        await self.selector.close()
        if self.css_loader:
            await self.css_loader.close()

    def validate(self, request: RenderRequest) -> None:
        """
        Enforce input size limits.

        Raises:
            InvalidInput: If a block, the total input or the inline CSS is too large
        """
        total = 0
        for index, block in enumerate(request.html_blocks):
            size = len(block.encode("utf-8"))
            if size > self.settings.max_html_block_bytes:
                raise InvalidInput(
                    f"html_blocks[{index}] exceeds maximum size of "
                    f"{self.settings.max_html_block_bytes} bytes",
                    details={"block": index, "size": size},
                )
            total += size

        if total > self.settings.max_total_input_bytes:
            raise InvalidInput(
                f"Total HTML size exceeds maximum of {self.settings.max_total_input_bytes} bytes",
                details={"size": total},
            )

        if request.css and len(request.css.encode("utf-8")) > self.settings.max_css_bytes:
            raise InvalidInput(
                f"css exceeds maximum size of {self.settings.max_css_bytes} bytes"
            )

    def sanitize_blocks(self, blocks: List[str]) -> str:
        """
        Concatenate blocks in order and sanitize the result.

        Raises:
            InvalidInput: If a block contains nothing but removed markup
        """
        for index, block in enumerate(blocks):
            if not sanitize(block):
                raise InvalidInput(
                    f"html_blocks[{index}] contained only dangerous or invalid HTML",
                    details={"block": index},
                )

        report = sanitize_with_report("".join(blocks))
        if report.anomaly:
            self.logger.warning("Sanitizer fell back to escaping", reason=str(report.anomaly))
        elif report.modified:
            self.logger.info(
                "Removed unsafe markup",
                removed_elements=report.removed_elements,
                removed_attributes=report.removed_attributes,
            )
        return report.html

    async def resolve_css(self, css_url: Optional[str], inline_css: Optional[str]) -> Tuple[str, bool]:
        """
        Collect the CSS for a request: the external sheet first, then inline CSS.

        A failed fetch is logged and the request continues with inline CSS only.

        Returns:
            (css text, whether any CSS was loaded)
        """
        parts: List[str] = []
        if css_url and self.css_loader:
            try:
                loaded = await self.css_loader.load(css_url)
                parts.append(loaded.content)
            except ExternalResourceFetchError as e:
                self.logger.warning(
                    "External CSS unavailable, rendering without it",
                    css_url=css_url,
                    timed_out=e.timed_out,
                    error=str(e),
                )
        if inline_css:
            parts.append(inline_css)

        css = "\n".join(parts)
        return css, bool(css.strip())

    async def convert(self, request: RenderRequest) -> RenderResult:
        """
        Convert a request to a published PNG.

        Raises:
            InvalidInput: If the request fails validation

        Returns:
            RenderResult; pipeline failures are reported in it rather than raised
        """
        self.validate(request)
        html = await asyncio.to_thread(self.sanitize_blocks, request.html_blocks)
        css, css_loaded = await self.resolve_css(request.css_url, request.css)
        content = SanitizedContent(html=html, css=css)
        content_hash = fingerprint(content.html, content.css)

        self.logger.info(
            "Converting HTML to PNG",
            content_hash=content_hash,
            html_blocks_count=len(request.html_blocks),
            css_url=request.css_url,
            css_loaded=css_loaded,
        )

        try:
            result = await self.render_content(content_hash, content)
        except RapidHTML2PNGError as e:
            self.logger.error(
                "Conversion failed",
                content_hash=content_hash,
                error_code=e.error_code,
                error=str(e),
            )
            return RenderResult(
                success=False,
                content_hash=content_hash,
                css_loaded=css_loaded,
                error=e.user_message,
                error_code=e.error_code,
            )

        return result.model_copy(update={"css_loaded": css_loaded})

    async def render_content(self, content_hash: str, content: SanitizedContent) -> RenderResult:
        """Return the artifact for ``content``, rendering it if not yet published."""
        entry = await self.store.lookup(content_hash)
        if entry is not None:
            width, height = await asyncio.to_thread(compute_size, content.html)
            self.logger.info("Cache hit", content_hash=content_hash, file_size=entry.file_size)
            return RenderResult(
                success=True,
                content_hash=content_hash,
                output_path=entry.path,
                file_size=entry.file_size,
                cached=True,
                engine=CACHE_ENGINE,
                width=width,
                height=height,
                aspect=classify_aspect(width, height),
            )

        return await self._flights.do(
            content_hash, lambda: self._render_and_store(content_hash, content)
        )

    async def _render_and_store(self, content_hash: str, content: SanitizedContent) -> RenderResult:
        # Another flight may have published between our lookup and this one starting
        entry = await self.store.lookup(content_hash)
        if entry is not None:
            return await self.render_content(content_hash, content)

        await self.selector.select()
        candidates = await self.selector.candidates()
        if not candidates:
            raise NoEngineAvailable("No rendering engine available (no usable renderer)")

        width, height = await asyncio.to_thread(compute_size, content.html)
        aspect = classify_aspect(width, height)

        last_error: Optional[EngineRenderError] = None
        for renderer in candidates[:MAX_ENGINE_ATTEMPTS]:
            plan = RenderPlan(
                width=width, height=height, engine=renderer.name, content=content, aspect=aspect
            )
            try:
                data = await self._render_with_timeout(renderer, plan)
            except EngineRenderError as e:
                self.logger.warning(
                    "Engine failed, trying next", engine=renderer.name, kind=e.kind, error=str(e)
                )
                last_error = e
                continue

            entry = await self.store.store(content_hash, data)
            self.render_count += 1
            self.logger.info(
                "Rendered PNG",
                content_hash=content_hash,
                engine=renderer.name,
                width=width,
                height=height,
                aspect=aspect.value,
                file_size=entry.file_size,
            )
            return RenderResult(
                success=True,
                content_hash=content_hash,
                output_path=entry.path,
                file_size=entry.file_size,
                cached=False,
                engine=renderer.name,
                width=width,
                height=height,
                aspect=aspect,
            )

        raise last_error or NoEngineAvailable("No rendering engine produced a PNG")

    async def _render_with_timeout(self, renderer: BaseRenderer, plan: RenderPlan) -> bytes:
        async with self._render_slots:
            try:
                data = await asyncio.wait_for(
                    renderer.render(plan), timeout=self.settings.render_timeout
                )
            except asyncio.TimeoutError as e:
                raise RenderTimeout(renderer.name, self.settings.render_timeout) from e

        if not data or not data.startswith(PNG_SIGNATURE):
            raise EngineRenderError(renderer.name, "output is not a PNG", kind="invalid_output")
        return data
