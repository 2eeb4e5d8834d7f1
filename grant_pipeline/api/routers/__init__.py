"""
API route handlers: the stage endpoints and health checks.
"""
