"""
Integration Tests for the Render Pipeline
=========================================

Full conversion flow over a real cache directory with fake and Pillow renderers.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from rapidhtml2png.core.cache.fingerprint import fingerprint
from rapidhtml2png.core.errors import ExternalResourceFetchError, InvalidInput
from rapidhtml2png.core.pipeline import CACHE_ENGINE, RenderPipeline
from rapidhtml2png.core.rendering.engines import EngineSelector
from rapidhtml2png.models.schemas import AspectClass, RenderRequest

from tests.utils.assertions import (
    assert_failed_render_result,
    assert_png_dimensions,
    assert_successful_render_result,
)
from tests.utils.helpers import list_temp_files, wait_for_condition
from tests.utils.mocks import FakeRenderer


def request(*blocks: str, **kwargs) -> RenderRequest:
    return RenderRequest(html_blocks=list(blocks), **kwargs)


class TestCacheFlow:
    """Miss then hit."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, pipeline, primary_renderer):
        first = await pipeline.convert(request("<div>HELLO</div>"))
        second = await pipeline.convert(request("<div>HELLO</div>"))

        assert_successful_render_result(first, cached=False)
        assert_successful_render_result(second, cached=True)
        assert first.output_path == second.output_path
        assert first.file_size == second.file_size
        assert first.content_hash == fingerprint("<div>HELLO</div>")
        assert second.engine == CACHE_ENGINE
        assert primary_renderer.render_calls == 1
        assert pipeline.render_count == 1

    @pytest.mark.asyncio
    async def test_result_reports_size_and_engine(self, pipeline):
        result = await pipeline.convert(request("<div>HELLO</div>"))

        assert result.engine == "primary"
        assert (result.width, result.height) == (60, 40)
        assert result.aspect == AspectClass.BALANCED
        assert_png_dimensions(result.output_path.read_bytes(), 60, 40)

    @pytest.mark.asyncio
    async def test_blocks_concatenated_in_order(self, pipeline):
        ab = await pipeline.convert(request("<p>a</p>", "<p>b</p>"))
        ba = await pipeline.convert(request("<p>b</p>", "<p>a</p>"))

        assert ab.content_hash == fingerprint("<p>a</p><p>b</p>")
        assert ab.content_hash != ba.content_hash

    @pytest.mark.asyncio
    async def test_sanitized_markup_is_what_gets_fingerprinted(self, pipeline, primary_renderer):
        dirty = await pipeline.convert(request("<div onclick='x()'>HELLO</div><script>1</script>"))
        clean = await pipeline.convert(request("<div>HELLO</div>"))

        assert dirty.content_hash == clean.content_hash
        assert clean.cached
        assert "<script" not in primary_renderer.plans[0].content.html

    @pytest.mark.asyncio
    async def test_css_changes_fingerprint(self, pipeline):
        plain = await pipeline.convert(request("<div>HELLO</div>"))
        styled = await pipeline.convert(request("<div>HELLO</div>", css="div { color: red }"))

        assert plain.content_hash != styled.content_hash
        assert styled.css_loaded
        assert not plain.css_loaded


class TestSingleFlight:
    """Identical concurrent requests render once."""

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_render_once(self, pipeline, primary_renderer):
        primary_renderer.release.clear()
        tasks = [
            asyncio.create_task(pipeline.convert(request("<div>same</div>"))) for _ in range(10)
        ]
        await wait_for_condition(lambda: primary_renderer.render_calls == 1, timeout=5.0)
        await asyncio.sleep(0.05)
        primary_renderer.release.set()

        results = await asyncio.gather(*tasks)

        assert primary_renderer.render_calls == 1
        assert len({r.output_path for r in results}) == 1
        assert all(r.success for r in results)
        assert list_temp_files(pipeline.store.root) == []

    @pytest.mark.asyncio
    async def test_distinct_requests_render_separately(self, pipeline, primary_renderer):
        await asyncio.gather(*(pipeline.convert(request(f"<p>{i}</p>")) for i in range(4)))
        assert primary_renderer.render_calls == 4

    @pytest.mark.asyncio
    async def test_cancelled_request_still_populates_cache(self, pipeline, primary_renderer):
        primary_renderer.release.clear()
        task = asyncio.create_task(pipeline.convert(request("<div>abandoned</div>")))
        await wait_for_condition(lambda: primary_renderer.render_calls == 1, timeout=5.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        primary_renderer.release.set()
        await pipeline._flights.drain()

        result = await pipeline.convert(request("<div>abandoned</div>"))
        assert result.cached
        assert primary_renderer.render_calls == 1


class TestEngineFallback:
    @pytest.mark.asyncio
    async def test_retries_once_on_next_engine(self, pipeline, primary_renderer, fallback_renderer):
        primary_renderer.fail = True

        result = await pipeline.convert(request("<div>HELLO</div>"))

        assert_successful_render_result(result, cached=False)
        assert result.engine == "fallback"
        assert primary_renderer.render_calls == 1
        assert fallback_renderer.render_calls == 1

    @pytest.mark.asyncio
    async def test_all_engines_fail(self, pipeline, primary_renderer, fallback_renderer):
        primary_renderer.fail = True
        fallback_renderer.fail = True

        result = await pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "RENDER_ERROR")
        assert result.content_hash == fingerprint("<div>HELLO</div>")
        assert await pipeline.store.lookup(result.content_hash) is None

    @pytest.mark.asyncio
    async def test_invalid_output_never_cached(self, pipeline, primary_renderer, fallback_renderer):
        primary_renderer.output = b"GIF89a not a png"
        fallback_renderer.output = b""

        result = await pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "RENDER_ERROR")
        assert list(pipeline.store.root.glob("*.png")) == []

    @pytest.mark.asyncio
    async def test_no_engine_available(self, cache_store, pipeline_settings):
        selector = EngineSelector([FakeRenderer(name="none", available=False)])
        render_pipeline = RenderPipeline(cache_store, selector, settings=pipeline_settings)

        result = await render_pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "NO_ENGINE_AVAILABLE")


class TestFailures:
    @pytest.mark.asyncio
    async def test_render_timeout(self, cache_store, pipeline_settings):
        slow = FakeRenderer(name="slow", delay=1.0)
        settings = pipeline_settings.model_copy(update={"render_timeout": 0.05})
        render_pipeline = RenderPipeline(cache_store, EngineSelector([slow]), settings=settings)

        result = await render_pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "RENDER_TIMEOUT")
        assert result.error == "Rendering timed out"
        assert await cache_store.lookup(result.content_hash) is None

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_reported(self, pipeline):
        with patch(
            "rapidhtml2png.core.cache.store.aiofiles.os.link",
            side_effect=OSError(28, "No space left on device"),
        ):
            result = await pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "CACHE_WRITE_ERROR")
        assert "No space left" not in result.error
        assert list_temp_files(pipeline.store.root) == []

    @pytest.mark.asyncio
    async def test_no_usable_candidate_is_reported(self, pipeline, primary_renderer):
        with patch.object(pipeline.selector, "candidates", AsyncMock(return_value=[])):
            result = await pipeline.convert(request("<div>HELLO</div>"))

        assert_failed_render_result(result, "NO_ENGINE_AVAILABLE")
        assert primary_renderer.render_calls == 0


class TestValidation:
    @pytest.mark.asyncio
    async def test_block_size_limit(self, pipeline):
        pipeline.settings = pipeline.settings.model_copy(update={"max_html_block_bytes": 10})
        with pytest.raises(InvalidInput) as exc_info:
            await pipeline.convert(request("<p>" + "x" * 20 + "</p>"))
        assert "html_blocks[0]" in exc_info.value.user_message

    @pytest.mark.asyncio
    async def test_total_size_limit(self, pipeline):
        pipeline.settings = pipeline.settings.model_copy(update={"max_total_input_bytes": 20})
        with pytest.raises(InvalidInput):
            await pipeline.convert(request("<p>0123456</p>", "<p>0123456</p>"))

    @pytest.mark.asyncio
    async def test_css_size_limit(self, pipeline):
        pipeline.settings = pipeline.settings.model_copy(update={"max_css_bytes": 5})
        with pytest.raises(InvalidInput):
            await pipeline.convert(request("<p>x</p>", css="p { color: red }"))

    @pytest.mark.asyncio
    async def test_block_with_only_dangerous_markup_rejected(self, pipeline, primary_renderer):
        with pytest.raises(InvalidInput) as exc_info:
            await pipeline.convert(request("<p>ok</p>", "<script>alert(1)</script>"))

        assert "html_blocks[1]" in exc_info.value.user_message
        assert primary_renderer.render_calls == 0


class TestExternalCss:
    @pytest.mark.asyncio
    async def test_fetched_css_applied_before_inline(self, pipeline, primary_renderer):
        fetch = AsyncMock(return_value=(200, b"p { color: blue }", {}))
        with patch.object(pipeline.css_loader, "_fetch", fetch):
            result = await pipeline.convert(
                request("<p>x</p>", css_url="https://cdn.example.com/a.css", css="p { margin: 0 }")
            )

        assert result.success
        assert result.css_loaded
        assert primary_renderer.plans[0].content.css == "p { color: blue }\np { margin: 0 }"

    @pytest.mark.asyncio
    async def test_fetch_failure_degrades(self, pipeline, primary_renderer):
        failure = ExternalResourceFetchError("https://cdn.example.com/a.css", "timed out", timed_out=True)
        with patch.object(pipeline.css_loader, "_fetch", AsyncMock(side_effect=failure)):
            result = await pipeline.convert(
                request("<p>x</p>", css_url="https://cdn.example.com/a.css")
            )

        assert result.success
        assert not result.css_loaded
        assert primary_renderer.plans[0].content.css == ""


class TestPillowEndToEnd:
    @pytest.mark.asyncio
    async def test_hello_miss_then_hit(self, pillow_pipeline):
        first = await pillow_pipeline.convert(request("<div>HELLO</div>"))
        second = await pillow_pipeline.convert(request("<div>HELLO</div>"))

        assert_successful_render_result(first, cached=False)
        assert_successful_render_result(second, cached=True)
        assert first.engine == "pillow"
        assert first.output_path == second.output_path
        assert_png_dimensions(first.output_path.read_bytes(), first.width, first.height)
