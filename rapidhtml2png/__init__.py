"""
RapidHTML2PNG
=============

Convert untrusted HTML fragments into PNG images, safely and cheaply on repeat
requests.

This package provides:
- HTML sanitization and log redaction
- Content fingerprinting and a content-addressable PNG cache
- Engine detection with high- and basic-fidelity rendering backends
- Content-driven canvas sizing
- A FastAPI front door for HTTP access
"""

__version__ = "1.0.0"
__author__ = "RapidHTML2PNG Team"
