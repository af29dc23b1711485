"""
Pillow Renderer
===============

Basic-fidelity fallback backend. Draws the visible text of the content onto a
transparent canvas with Pillow. Layout and most CSS are ignored; only a few
top-level declarations (font size, text color, background color) are sniffed
from the stylesheet.
"""

import asyncio
import re
import textwrap
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont, features
import PIL

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.core.errors import EngineRenderError
from rapidhtml2png.core.rendering.base import BaseRenderer, encode_png
from rapidhtml2png.core.rendering.sizer import PADDING, extract_text_lines
from rapidhtml2png.models.schemas import EngineCapability, EngineFidelity, RenderPlan

logger = get_logger(__name__)

DEFAULT_FONT_SIZE = 16
DEFAULT_COLOR = "#000000"

_FONT_SIZE = re.compile(r"font-size\s*:\s*(\d+(?:\.\d+)?)\s*(px|pt|em|rem)?", re.IGNORECASE)
_COLOR = re.compile(r"(?<![\w-])color\s*:\s*(#[0-9a-fA-F]{3,8}|[a-zA-Z]+)", re.IGNORECASE)
_BACKGROUND = re.compile(
    r"(?<![\w-])background(?:-color)?\s*:\s*(#[0-9a-fA-F]{3,8}|[a-zA-Z]+)", re.IGNORECASE
)


@dataclass
class BasicStyle:
    """The handful of CSS properties the basic backend honors."""

    font_size: int = DEFAULT_FONT_SIZE
    color: str = DEFAULT_COLOR
    background: Optional[str] = None


def parse_basic_css(css: Optional[str]) -> BasicStyle:
    """Sniff font size, text color and background color from CSS text."""
    style = BasicStyle()
    if not css:
        return style

    match = _FONT_SIZE.search(css)
    if match:
        size = float(match.group(1))
        unit = (match.group(2) or "px").lower()
        if unit == "pt":
            size *= 1.33
        elif unit in ("em", "rem"):
            size *= 16
        style.font_size = max(6, min(200, int(size)))

    match = _COLOR.search(css)
    if match:
        style.color = match.group(1)

    match = _BACKGROUND.search(css)
    if match and match.group(1).lower() != "transparent":
        style.background = match.group(1)

    return style


def _rgba(color: str, fallback: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(color)
    except ValueError:
        return fallback
    if len(rgb) == 4:
        return rgb  # type: ignore[return-value]
    return (rgb[0], rgb[1], rgb[2], 255)


class PillowRenderer(BaseRenderer):
    """Text-only renderer built on Pillow."""

    name = "pillow"
    fidelity = EngineFidelity.BASIC

    def __init__(self) -> None:
        self.logger: Any = logger.bind(generator="pillow")

    async def probe(self) -> EngineCapability:
        try:
            if not features.check_codec("zlib"):
                return self.capability(False, PIL.__version__, "Pillow built without zlib PNG support")
        except Exception as e:
            return self.capability(False, getattr(PIL, "__version__", None), f"Pillow probe failed: {e}")
        return self.capability(True, PIL.__version__)

    async def render(self, plan: RenderPlan) -> bytes:
        self.logger.info(
            "Rendering basic PNG",
            html_length=len(plan.content.html),
            width=plan.width,
            height=plan.height,
        )
        try:
            return await asyncio.to_thread(self._draw, plan)
        except (OSError, ValueError) as e:
            raise EngineRenderError(self.name, f"Pillow rendering failed: {e}") from e

    def _draw(self, plan: RenderPlan) -> bytes:
        style = parse_basic_css(plan.content.css)
        font = ImageFont.load_default(size=style.font_size)

        background = _rgba(style.background, (0, 0, 0, 0)) if style.background else (0, 0, 0, 0)
        text_color = _rgba(style.color, (0, 0, 0, 255))

        image = Image.new("RGBA", (plan.width, plan.height), background)
        draw = ImageDraw.Draw(image)

        char_width = max(1.0, draw.textlength("M", font=font) * 0.6)
        columns = max(1, int((plan.width - 2 * PADDING) / char_width))
        line_height = int(style.font_size * 1.25)

        y = PADDING
        for line in extract_text_lines(plan.content.html):
            for wrapped in textwrap.wrap(line, width=columns, break_long_words=True) or [""]:
                if y > plan.height:
                    break
                draw.text((PADDING, y), wrapped, font=font, fill=text_color)
                y += line_height

        return encode_png(image)
