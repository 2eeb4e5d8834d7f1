"""
Pydantic models for API request/response schemas.

Stage request bodies are validated by the pipeline itself so that every
violation is reported in the same error shape; these models describe what
goes back out.
"""
