"""
Common API models used across the stage endpoints.

Stage responses are deliberately flat: ``{"output": ...}`` on success and
``{"error": ..., "kind": ..., "retryable": ..., <diagnostics>}`` on failure.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List


class APIError(BaseModel):
    """Standard error response format; diagnostic fields vary by kind."""
    model_config = ConfigDict(extra="allow")

    error: str = Field(..., description="Human-readable error message")
    kind: str = Field(..., description="Machine-readable failure kind, e.g. ValidationError or Timeout")
    retryable: bool = Field(False, description="Whether the same request may succeed if sent again later")


class StageOutput(BaseModel):
    output: str = Field(..., description="Stage output text, ending with the stage trailer")


class StageInfo(BaseModel):
    name: str
    title: str
    route: str
    required: List[str]
    optional: List[str]
    require_any: List[str] = Field(default_factory=list)
    next: List[str] = Field(default_factory=list, description="Stages that may consume this stage's output")
    auxiliary: bool = False
    profiles: List[str]


class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    uptime: float = Field(..., description="Uptime in seconds")
    dependencies: Dict[str, str] = Field(..., description="Status of external dependencies")
    stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Per-stage completion call statistics")
