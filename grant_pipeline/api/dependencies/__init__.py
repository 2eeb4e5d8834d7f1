"""
FastAPI dependencies for request processing.

Dependencies hand the shared ModelManager and StageExecutor to endpoints.
"""
