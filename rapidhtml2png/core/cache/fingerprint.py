"""
Content Fingerprint
===================

Deterministic cache key derived from sanitized HTML and resolved CSS.

The fingerprint is the artifact filename stem, so the byte layout hashed here
is part of the on-disk contract and must not change without treating it as a
breaking change:

    sha256( len(html_utf8) as ASCII decimal + ":" + html_utf8 + css_utf8 )

HTML always comes first, then CSS. The length prefix makes the boundary
between the two unambiguous.
"""

import hashlib
import re

FINGERPRINT_ALGORITHM = "sha256"
FINGERPRINT_LENGTH = 64

_FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def fingerprint(html: str, css: str = "") -> str:
    """
    Compute the content fingerprint.

    Args:
        html: Sanitized HTML
        css: Resolved CSS text, empty when none

    Returns:
        64-character lowercase hexadecimal digest
    """
    html_bytes = html.encode("utf-8")
    digest = hashlib.sha256()
    digest.update(str(len(html_bytes)).encode("ascii"))
    digest.update(b":")
    digest.update(html_bytes)
    digest.update((css or "").encode("utf-8"))
    return digest.hexdigest()


def is_fingerprint(value: str) -> bool:
    """Check that ``value`` has the shape of a fingerprint."""
    return isinstance(value, str) and bool(_FINGERPRINT_PATTERN.match(value))
