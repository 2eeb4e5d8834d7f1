"""
FastAPI application layer for the grant pipeline.

Exposes every pipeline stage as an independent POST endpoint under
``/api/v1/stages``.
"""
