"""
Renderer Base
=============

Common interface for rendering backends and the helpers they share.

Every backend takes a ``RenderPlan`` and returns PNG bytes in RGBA mode of
exactly the planned size. Output is re-encoded through Pillow so identical
pixels always produce identical bytes.
"""

import io
import re
from typing import Optional
from abc import ABC, abstractmethod

from PIL import Image

from rapidhtml2png.models.schemas import EngineCapability, EngineFidelity, RenderPlan, SanitizedContent

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
PNG_COMPRESS_LEVEL = 6

_STYLE_CLOSE = re.compile(r"</(style)", re.IGNORECASE)


class BaseRenderer(ABC):
    """Abstract base class for rendering backends."""

    name: str = "base"
    fidelity: EngineFidelity = EngineFidelity.BASIC

    @abstractmethod
    async def probe(self) -> EngineCapability:
        """Check whether this backend can render in the current process. Must not raise."""
        pass

    @abstractmethod
    async def render(self, plan: RenderPlan) -> bytes:
        """Render the plan to PNG bytes."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    def capability(
        self, available: bool, version: Optional[str] = None, reason: Optional[str] = None
    ) -> EngineCapability:
        return EngineCapability(
            name=self.name,
            available=available,
            version=version,
            reason=reason,
            fidelity=self.fidelity,
        )


def build_document(content: SanitizedContent) -> str:
    """
    Wrap sanitized content in a full HTML document with a transparent body.

    The CSS is embedded verbatim except that ``</style`` is escaped, so a
    stylesheet cannot close its own element and inject markup.
    """
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="UTF-8">',
        "<style>html, body { margin: 0; padding: 0; background: transparent; }</style>",
    ]
    if content.css:
        css = _STYLE_CLOSE.sub(r"<\\/\1", content.css)
        parts.append(f"<style>{css}</style>")
    parts.extend(["</head>", f"<body>{content.html}</body>", "</html>"])
    return "\n".join(parts)


def normalize_png(png_bytes: bytes, width: int, height: int) -> bytes:
    """
    Re-encode an image as an RGBA PNG of exactly ``width`` x ``height``.

    Larger images are cropped from the top-left; smaller ones are padded
    with transparent pixels.
    """
    with Image.open(io.BytesIO(png_bytes)) as source:
        image = source.convert("RGBA")

    if image.size != (width, height):
        canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        canvas.paste(image.crop((0, 0, min(width, image.width), min(height, image.height))), (0, 0))
        image = canvas

    return encode_png(image)


def encode_png(image: Image.Image) -> bytes:
    """Encode a Pillow image as PNG without any time-dependent metadata."""
    output = io.BytesIO()
    image.save(output, format="PNG", optimize=False, compress_level=PNG_COMPRESS_LEVEL)
    return output.getvalue()
