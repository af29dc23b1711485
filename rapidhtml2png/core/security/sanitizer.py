"""
HTML Sanitizer
==============

Strip executable and interactive constructs from untrusted HTML before
anything else touches it.

The input is parsed into a tree (BeautifulSoup, ``html.parser`` builder) and
re-serialized, so the output only ever contains markup the parser actually
recognized. Removal works on nodes and attributes rather than on text, which
keeps re-assembled or obfuscated variants from surviving:

- dangerous elements are dropped together with their content
- elements with malformed tag names are unwrapped (children kept)
- comments, processing instructions and declarations are dropped
- ``on*`` event-handler attributes are dropped from every element
- attributes carrying ``javascript:``/``vbscript:`` (and ``data:`` in URL
  attributes) are dropped, as are ``style`` attributes using ``expression(``

``sanitize`` is pure and idempotent: ``sanitize(sanitize(x)) == sanitize(x)``.
"""

import html
import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from bs4 import BeautifulSoup, Tag
from bs4.element import PreformattedString

from rapidhtml2png.core.errors import SanitizationAnomaly

DANGEROUS_ELEMENTS: FrozenSet[str] = frozenset(
    {
        "script",
        "iframe",
        "frame",
        "frameset",
        "object",
        "embed",
        "applet",
        "form",
        "input",
        "button",
        "textarea",
        "select",
    }
)

URL_ATTRIBUTES: FrozenSet[str] = frozenset(
    {
        "href",
        "src",
        "action",
        "formaction",
        "background",
        "lowsrc",
        "dynsrc",
        "poster",
        "xlink:href",
    }
)

# Whitespace-only text is kept byte for byte everywhere, not only inside <pre>
_PRESERVE_WHITESPACE_TAGS: FrozenSet[str] = frozenset(
    {BeautifulSoup.ROOT_TAG_NAME, "pre", "textarea"}
)

_VALID_TAG_NAME = re.compile(r"^[a-z][a-z0-9._:-]*$")
# Browsers ignore whitespace and control characters inside a URL scheme
_IGNORED_IN_SCHEME = re.compile(r"[\x00-\x20\x7f]+")
_SCRIPT_SCHEME = re.compile(r"(?:javascript|vbscript):", re.IGNORECASE)
_DATA_SCHEME = re.compile(r"^data:", re.IGNORECASE)
_CSS_EXPRESSION = re.compile(r"expression\s*\(", re.IGNORECASE)


@dataclass
class SanitizationReport:
    """Sanitized markup plus what was taken out of it."""

    html: str
    removed_elements: List[str] = field(default_factory=list)
    removed_attributes: List[str] = field(default_factory=list)
    anomaly: Optional[SanitizationAnomaly] = None

    @property
    def modified(self) -> bool:
        return bool(self.removed_elements or self.removed_attributes or self.anomaly)


def sanitize(raw_html: str) -> str:
    """Return ``raw_html`` with every script-executing construct removed."""
    return sanitize_with_report(raw_html).html


def sanitize_with_report(raw_html: str) -> SanitizationReport:
    """
    Sanitize HTML and report what was removed.

    Never raises. If the parser chokes on pathological input the whole
    fragment is escaped and returned as inert text, and the report carries a
    ``SanitizationAnomaly`` describing what happened.

    Args:
        raw_html: Untrusted HTML fragment

    Returns:
        SanitizationReport with the safe HTML
    """
    if not raw_html:
        return SanitizationReport(html="")

    report = SanitizationReport(html="")
    try:
        soup = BeautifulSoup(
            raw_html, "html.parser", preserve_whitespace_tags=_PRESERVE_WHITESPACE_TAGS
        )
        _strip_markup_declarations(soup)
        _strip_elements(soup, report)
        _strip_attributes(soup, report)
        report.html = soup.decode(formatter="minimal").strip()
    except Exception as e:
        report.anomaly = SanitizationAnomaly(f"HTML parser failed: {type(e).__name__}")
        report.html = html.escape(raw_html, quote=False).strip()

    return report


def _strip_markup_declarations(soup: BeautifulSoup) -> None:
    """Drop comments, CDATA, doctypes and processing instructions."""
    for node in soup.find_all(string=lambda s: isinstance(s, PreformattedString)):
        node.extract()


def _strip_elements(soup: BeautifulSoup, report: SanitizationReport) -> None:
    # list() because the tree is mutated while walking it
    for tag in list(soup.find_all(True)):
        if tag.decomposed:
            continue

        name = (tag.name or "").lower()
        if name in DANGEROUS_ELEMENTS:
            report.removed_elements.append(name)
            tag.decompose()
        elif not _VALID_TAG_NAME.match(name):
            report.removed_elements.append(name)
            tag.unwrap()


def _strip_attributes(soup: BeautifulSoup, report: SanitizationReport) -> None:
    for tag in soup.find_all(True):
        for name in list(tag.attrs):
            if _is_dangerous_attribute(tag, name):
                report.removed_attributes.append(f"{tag.name}.{name}")
                del tag.attrs[name]


def _is_dangerous_attribute(tag: Tag, name: str) -> bool:
    lowered = name.lower()
    if lowered.startswith("on"):
        return True

    value = tag.attrs.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if not value:
        return False

    compact = _IGNORED_IN_SCHEME.sub("", str(value))
    if _SCRIPT_SCHEME.search(compact):
        return True
    if lowered in URL_ATTRIBUTES and _DATA_SCHEME.match(compact):
        return True
    if lowered == "style" and _CSS_EXPRESSION.search(compact):
        return True
    return False
