"""
Unit Tests for Pillow Renderer
==============================
"""

import io

import pytest
from PIL import Image

from rapidhtml2png.core.rendering.pillow_renderer import (
    DEFAULT_FONT_SIZE,
    PillowRenderer,
    parse_basic_css,
)
from rapidhtml2png.models.schemas import EngineFidelity, RenderPlan, SanitizedContent

from tests.utils.assertions import assert_png_dimensions, assert_png_mode, assert_valid_png


def make_plan(html: str, css: str = "", width: int = 200, height: int = 60) -> RenderPlan:
    return RenderPlan(
        width=width,
        height=height,
        engine="pillow",
        content=SanitizedContent(html=html, css=css),
    )


class TestParseBasicCss:
    def test_defaults(self):
        style = parse_basic_css("")
        assert style.font_size == DEFAULT_FONT_SIZE
        assert style.color == "#000000"
        assert style.background is None

    @pytest.mark.parametrize(
        "css,expected",
        [
            ("p { font-size: 20px }", 20),
            ("p { font-size: 12pt }", 15),
            ("p { font-size: 2em }", 32),
            ("p { font-size: 1000px }", 200),
        ],
    )
    def test_font_size_units(self, css, expected):
        assert parse_basic_css(css).font_size == expected

    def test_color_not_confused_with_background_color(self):
        style = parse_basic_css("body { background-color: #fff; color: red }")
        assert style.color == "red"
        assert style.background == "#fff"

    def test_transparent_background_ignored(self):
        assert parse_basic_css("body { background: transparent }").background is None


class TestPillowRenderer:
    @pytest.mark.asyncio
    async def test_probe_available(self):
        capability = await PillowRenderer().probe()
        assert capability.available
        assert capability.name == "pillow"
        assert capability.fidelity == EngineFidelity.BASIC
        assert capability.version

    @pytest.mark.asyncio
    async def test_render_exact_size_rgba(self):
        data = await PillowRenderer().render(make_plan("<div>HELLO</div>", width=60, height=40))

        assert_valid_png(data)
        assert_png_dimensions(data, 60, 40)
        assert_png_mode(data, "RGBA")

    @pytest.mark.asyncio
    async def test_transparent_background_by_default(self):
        data = await PillowRenderer().render(make_plan("<div>x</div>"))
        with Image.open(io.BytesIO(data)) as image:
            assert image.getpixel((image.width - 1, image.height - 1))[3] == 0

    @pytest.mark.asyncio
    async def test_text_is_drawn(self):
        data = await PillowRenderer().render(make_plan("<div>HELLO</div>", css="div { color: #ff0000 }"))
        with Image.open(io.BytesIO(data)) as image:
            alpha = image.getchannel("A")
            assert alpha.getbbox() is not None

    @pytest.mark.asyncio
    async def test_background_color_fills_canvas(self):
        data = await PillowRenderer().render(
            make_plan("<div>x</div>", css="body { background-color: #00ff00 }")
        )
        with Image.open(io.BytesIO(data)) as image:
            assert image.getpixel((image.width - 1, image.height - 1)) == (0, 255, 0, 255)

    @pytest.mark.asyncio
    async def test_unknown_color_falls_back(self):
        data = await PillowRenderer().render(make_plan("<div>x</div>", css="div { color: notacolor }"))
        assert_valid_png(data)

    @pytest.mark.asyncio
    async def test_deterministic_output(self):
        renderer = PillowRenderer()
        plan = make_plan("<p>Same input</p>", css="p { font-size: 14px }")
        assert await renderer.render(plan) == await renderer.render(plan)
