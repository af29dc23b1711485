"""
Data Models
===========

Pydantic data models for request/response validation and internal data structures.

Models:
- schemas: Render requests, pipeline records and API response schemas
"""
