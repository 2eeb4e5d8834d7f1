"""
Health check endpoints for monitoring and diagnostics.
"""

import time
from fastapi import APIRouter, Depends

from ..models.common import HealthStatus
from ..dependencies.runtime import get_executor, get_model_manager
from ...models.manager import ModelManager
from ...pipeline.executor import StageExecutor

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()

API_VERSION = "1.0.0"


@router.get("", response_model=HealthStatus)
async def health_check(
    model_manager: ModelManager = Depends(get_model_manager),
    executor: StageExecutor = Depends(get_executor),
):
    """
    Basic health check endpoint.

    Reports configured providers and the compressor in use together with
    per-stage call statistics. No completion calls are made.
    """
    uptime = time.time() - _server_start_time

    dependencies = {}
    for name, provider_cfg in model_manager.config["providers"].items():
        state = "initialized" if name in model_manager._providers else "configured"
        dependencies[f"provider:{name}"] = f"{provider_cfg['type']} ({state})"

    compressor = executor.compressor
    dependencies["compressor"] = type(compressor).__name__ if compressor else "disabled"

    return HealthStatus(
        status="healthy",
        version=API_VERSION,
        uptime=uptime,
        dependencies=dependencies,
        stats=model_manager.get_stats(),
    )
