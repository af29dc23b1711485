"""
Rendering Module
================

Turns sanitized content into PNG bytes.

Components:
- sizer: Canvas estimation and aspect classification
- base: Renderer interface and shared PNG helpers
- playwright_renderer: High-fidelity headless Chromium backend
- pillow_renderer: Basic-fidelity text backend
- engines: Capability detection and engine selection
"""
