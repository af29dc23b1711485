"""
Cache Module
============

Content-addressable storage for rendered artifacts.

Components:
- fingerprint: Deterministic content key (artifact filename stem)
- store: Atomic publish-by-link PNG store
- css_loader: External stylesheet fetcher with TTL disk cache
"""
