"""
FastAPI REST Endpoints
======================

HTTP access to the render pipeline.

Endpoints:
- POST /convert: HTML blocks (plus optional CSS) to a cached PNG
- GET /health: Health check with the engine capability table
- GET /engines: Rendering engine detection results
"""
