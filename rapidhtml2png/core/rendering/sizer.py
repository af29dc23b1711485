"""
Canvas Sizer
============

Estimate the output canvas from sanitized content before rendering.

Text is measured on a fixed character grid. Block-level elements and ``<br>``
start new lines; whitespace inside a line is collapsed. Declared ``width`` /
``height`` (px in ``style`` attributes or plain numeric attributes) act as
lower bounds, and the declared width doubles as the wrap width.

The wrap width never depends on the text itself. That keeps the estimate
monotonic: appending text can only lengthen a line or add lines, so neither
dimension shrinks.
"""

import math
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from rapidhtml2png.models.schemas import AspectClass

CHAR_WIDTH = 8
LINE_HEIGHT = 20
PADDING = 10
DEFAULT_WRAP_WIDTH = 800
MIN_DIMENSION = 16
MAX_DIMENSION = 4000

WIDE_RATIO = 2.0
TALL_RATIO = 1.5

BLOCK_ELEMENTS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "details", "div", "dl", "dt",
        "fieldset", "figcaption", "figure", "footer", "h1", "h2", "h3", "h4", "h5", "h6",
        "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section", "summary",
        "table", "tbody", "thead", "tfoot", "tr", "ul",
    }
)
INVISIBLE_ELEMENTS = frozenset({"style", "head", "title", "template", "noscript"})

_WHITESPACE = re.compile(r"\s+")
_STYLE_DIMENSION = re.compile(
    r"(?<![\w-])(width|height)\s*:\s*(\d+(?:\.\d+)?)\s*px", re.IGNORECASE
)
_NUMERIC_ATTRIBUTE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:px)?\s*$", re.IGNORECASE)


def extract_text_lines(html: str) -> List[str]:
    """
    Flatten HTML into visible text lines.

    Args:
        html: Sanitized HTML

    Returns:
        Non-empty lines with internal whitespace collapsed
    """
    if not html:
        return []

    soup = BeautifulSoup(html, "html.parser")
    chunks: List[str] = []
    _collect_text(soup, chunks)

    lines = []
    for raw_line in "".join(chunks).split("\n"):
        line = _WHITESPACE.sub(" ", raw_line).strip()
        if line:
            lines.append(line)
    return lines


def _collect_text(node: Tag, chunks: List[str]) -> None:
    for child in node.children:
        if isinstance(child, PreformattedString):
            continue
        if isinstance(child, NavigableString):
            chunks.append(str(child).replace("\n", " "))
            continue
        if not isinstance(child, Tag):
            continue

        name = (child.name or "").lower()
        if name in INVISIBLE_ELEMENTS:
            continue
        if name == "br":
            chunks.append("\n")
            continue

        is_block = name in BLOCK_ELEMENTS
        if is_block:
            chunks.append("\n")
        _collect_text(child, chunks)
        if is_block:
            chunks.append("\n")


def declared_dimensions(html: str) -> Tuple[Optional[int], Optional[int]]:
    """Return the largest declared width and height, if any."""
    if not html:
        return None, None

    soup = BeautifulSoup(html, "html.parser")
    widths: List[float] = []
    heights: List[float] = []

    for tag in soup.find_all(True):
        style = tag.get("style")
        if isinstance(style, str):
            for prop, value in _STYLE_DIMENSION.findall(style):
                (widths if prop.lower() == "width" else heights).append(float(value))

        for attr, bucket in (("width", widths), ("height", heights)):
            value = tag.get(attr)
            if isinstance(value, str):
                match = _NUMERIC_ATTRIBUTE.match(value)
                if match:
                    bucket.append(float(match.group(1)))

    width = int(math.ceil(max(widths))) if widths else None
    height = int(math.ceil(max(heights))) if heights else None
    return width, height


def _clamp(value: int) -> int:
    return max(MIN_DIMENSION, min(MAX_DIMENSION, value))


def compute_size(sanitized_html: str) -> Tuple[int, int]:
    """
    Compute the target canvas for sanitized content.

    Args:
        sanitized_html: Output of the sanitizer

    Returns:
        (width, height) in pixels, each within [MIN_DIMENSION, MAX_DIMENSION]
    """
    lines = extract_text_lines(sanitized_html)
    declared_width, declared_height = declared_dimensions(sanitized_html)

    wrap_width = declared_width or DEFAULT_WRAP_WIDTH
    columns = max(1, (wrap_width - 2 * PADDING) // CHAR_WIDTH)

    longest = max((len(line) for line in lines), default=0)
    text_width = min(longest * CHAR_WIDTH + 2 * PADDING, wrap_width) if lines else 0

    wrapped_lines = sum(max(1, math.ceil(len(line) / columns)) for line in lines)
    text_height = wrapped_lines * LINE_HEIGHT + 2 * PADDING if lines else 0

    width = max(declared_width or 0, text_width)
    height = max(declared_height or 0, text_height)
    return _clamp(width), _clamp(height)


def classify_aspect(width: int, height: int) -> AspectClass:
    """Classify a canvas as wide, tall or balanced."""
    if height > 0 and width / height > WIDE_RATIO:
        return AspectClass.WIDE
    if width > 0 and height / width > TALL_RATIO:
        return AspectClass.TALL
    return AspectClass.BALANCED
