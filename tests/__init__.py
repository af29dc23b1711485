"""
Test Suite
==========

Test suite matching the rapidhtml2png/ package structure.

Test Categories:
- unit: Unit tests for individual components
- integration: Pipeline flows and API contracts
- security: Sanitization, redaction and isolation checks
"""
