"""
Security Module
===============

Untrusted-input hygiene shared by the render path and logging.

Components:
- sanitizer: Strip executable and interactive constructs from HTML
- redactor: Replace secret values in structured data before logging
"""
