"""
Stage endpoints.

One POST route per entry of the stage catalogue. Each route takes the
stage's generated request model as its body, hands it to the StageExecutor
and maps the StageResult onto the response: ``{"output": ...}`` with 200,
or the error payload with the error's status.
"""

import logging
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from typing import List, Optional

from ..models.common import APIError, StageInfo, StageOutput
from ..dependencies.runtime import get_executor, get_model_manager
from ...models.manager import ModelManager
from ...pipeline.errors import StageError
from ...pipeline.executor import StageExecutor
from ...pipeline.orchestrator import describe_stages
from ...pipeline.schemas import request_model
from ...pipeline.stages import API_PREFIX, STAGES, StageSpec

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    status: {"model": APIError}
    for status in (400, 405, 408, 429, 500)
}


_STAGES_BY_PATH = {f"{API_PREFIX}{spec.route}": spec for spec in STAGES.values()}


def error_response(error: StageError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def stage_for_path(path: str) -> Optional[StageSpec]:
    return _STAGES_BY_PATH.get(path.rstrip("/"))


def _stage_endpoint(spec: StageSpec):
    body_model = request_model(spec)

    async def run_stage(
        body: body_model,
        profile: Optional[str] = Query(None, description="Named configuration profile, e.g. thorough, fast or minimal"),
        executor: StageExecutor = Depends(get_executor),
    ):
        result = await executor.execute(spec, body, profile=profile)
        if not result.ok:
            return error_response(result.error)
        return StageOutput(output=result.output.text)

    run_stage.__name__ = f"run_{spec.name}"
    run_stage.__doc__ = f"Run the {spec.title} stage."
    return run_stage


@router.get("", response_model=List[StageInfo])
async def list_stages(model_manager: ModelManager = Depends(get_model_manager)):
    """Stage catalogue: routes, fields and which stage may follow which."""
    return describe_stages(model_manager.profile_names)


for _spec in STAGES.values():
    router.add_api_route(
        _spec.route,
        _stage_endpoint(_spec),
        methods=["POST"],
        response_model=StageOutput,
        responses=_ERROR_RESPONSES,
        summary=_spec.title,
        name=_spec.name,
    )
