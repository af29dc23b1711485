"""
Test Configuration
==================

Pytest configuration with fixtures for all test types.
Points the application at throwaway directories before any module reads
its settings.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="rapidhtml2png_session_"))
os.environ["RAPIDHTML2PNG_ENVIRONMENT"] = "testing"
os.environ["RAPIDHTML2PNG_LOG_LEVEL"] = "DEBUG"
os.environ["RAPIDHTML2PNG_MEDIA_ROOT"] = str(_TEST_ROOT / "media")
os.environ["RAPIDHTML2PNG_LOG_DIR"] = str(_TEST_ROOT / "logs")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from rapidhtml2png.config.settings import Settings, reload_settings
from rapidhtml2png.core.cache.css_loader import CssLoader
from rapidhtml2png.core.cache.store import CacheStore
from rapidhtml2png.core.pipeline import RenderPipeline
from rapidhtml2png.core.rendering.engines import EngineSelector
from rapidhtml2png.core.rendering.pillow_renderer import PillowRenderer
from rapidhtml2png.models.schemas import EngineFidelity

from tests.utils.mocks import FakeRenderer


def pytest_sessionfinish(session, exitstatus) -> None:
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Test settings fixture."""
    return reload_settings()


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """Per-test artifact directory."""
    path = tmp_path / "media"
    path.mkdir()
    return path


@pytest.fixture
def pipeline_settings(test_settings: Settings, media_root: Path) -> Settings:
    """Settings copy pointed at the per-test media directory."""
    return test_settings.model_copy(
        update={"media_root": media_root, "render_timeout": 5.0, "render_concurrency": 4}
    )


@pytest.fixture
def cache_store(media_root: Path) -> CacheStore:
    return CacheStore(media_root)


@pytest.fixture
def primary_renderer() -> FakeRenderer:
    return FakeRenderer(name="primary", fidelity=EngineFidelity.HIGH)


@pytest.fixture
def fallback_renderer() -> FakeRenderer:
    return FakeRenderer(name="fallback", fidelity=EngineFidelity.BASIC)


@pytest.fixture
def engine_selector(primary_renderer: FakeRenderer, fallback_renderer: FakeRenderer) -> EngineSelector:
    return EngineSelector([primary_renderer, fallback_renderer])


@pytest.fixture
def css_loader(media_root: Path) -> CssLoader:
    return CssLoader(cache_dir=media_root / "css_cache", timeout=2.0, ttl=3600)


@pytest_asyncio.fixture
async def pipeline(
    cache_store: CacheStore,
    engine_selector: EngineSelector,
    css_loader: CssLoader,
    pipeline_settings: Settings,
) -> AsyncGenerator[RenderPipeline, None]:
    """Pipeline over fake renderers."""
    render_pipeline = RenderPipeline(
        store=cache_store,
        selector=engine_selector,
        css_loader=css_loader,
        settings=pipeline_settings,
    )
    yield render_pipeline
    await render_pipeline.close()


@pytest.fixture
def pillow_pipeline(
    cache_store: CacheStore, css_loader: CssLoader, pipeline_settings: Settings
) -> RenderPipeline:
    """Pipeline with the real Pillow backend only."""
    return RenderPipeline(
        store=cache_store,
        selector=EngineSelector([PillowRenderer()]),
        css_loader=css_loader,
        settings=pipeline_settings,
    )


@pytest.fixture
def api_client(pillow_pipeline: RenderPipeline) -> Generator[TestClient, None, None]:
    """FastAPI test client backed by the Pillow pipeline, without the lifespan."""
    from rapidhtml2png.api.dependencies import get_pipeline
    from rapidhtml2png.api.main import create_app

    app = create_app()
    app.dependency_overrides[get_pipeline] = lambda: pillow_pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()
