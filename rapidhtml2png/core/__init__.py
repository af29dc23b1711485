"""
Core Business Logic
==================

The render pipeline: sanitization, fingerprinting, caching, engine selection,
sizing and rendering.

Modules:
- security: HTML sanitizer and log redactor
- cache: Content fingerprints, PNG artifact store and CSS loader
- rendering: Engine selection, sizing and rendering backends
- pipeline: Request orchestration with per-fingerprint single flight
"""
