"""
Stage execution.

StageExecutor runs one stage end to end: validate the raw input, size every
textual field to the stage budgets, render the stage template, race the
completion call against the stage deadline and post-process the answer.
Whatever happens, the caller gets back a StageResult holding either the output
Artifact or a typed StageError; nothing partial is ever returned.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, TYPE_CHECKING
import asyncio
import logging
import time

from ..models.manager import ModelManager, StageProfile
from ..models.providers.base import ModelError, ModelRateLimited, ModelResponse, ModelTimeout
from .budget import BudgetEnforcer
from .errors import EmptyResponse, InternalError, StageError, StageTimeout, StageValidationError, UpstreamError, UpstreamRateLimited
from .stages import StageSpec
from .types import Artifact, StageRequest, StageResult
from .validation import text_sections, validate_request

if TYPE_CHECKING:
    from .compressor import BaseCompressor

logger = logging.getLogger(__name__)


def ensure_trailer(text: str, trailer: Optional[str]) -> str:
    """Append the trailer unless the text already ends with it."""
    text = text.strip()
    if not trailer or text.endswith(trailer.strip()):
        return text
    return f"{text}\n\n{trailer}"


class StageExecutor:
    def __init__(self, manager: ModelManager, compressor: Optional["BaseCompressor"] = None):
        self.manager = manager
        self.budgets = BudgetEnforcer(compressor)

    @property
    def compressor(self) -> Optional["BaseCompressor"]:
        return self.budgets.compressor

    @compressor.setter
    def compressor(self, compressor: Optional["BaseCompressor"]):
        self.budgets.compressor = compressor

    async def execute(self, spec: StageSpec, raw_input: Any, profile: Optional[str] = None, timeout: Optional[float] = None) -> StageResult:
        t0 = time.perf_counter()
        try:
            output = await self._run(spec, raw_input, profile, timeout)
        except StageError as e:
            logger.info(f"{spec.name} failed after {time.perf_counter() - t0:.2f}s: {e.kind}: {e.message}")
            return StageResult.failed(spec.name, e)
        except Exception as e:
            logger.exception(f"{spec.name}: unexpected error")
            return StageResult.failed(
                spec.name,
                InternalError(f"Unexpected error in {spec.name}: {e}", type=type(e).__name__),
            )

        logger.info(
            f"{spec.name} [{profile or self.manager.default_profile}] completed in "
            f"{time.perf_counter() - t0:.2f}s ({output.length} chars)"
        )
        return StageResult.succeeded(output)

    def resolve_profile(self, spec: StageSpec, profile: Optional[str]) -> StageProfile:
        if profile is not None and profile not in self.manager.profile_names:
            raise StageValidationError(
                f"Unknown profile '{profile}'",
                field="profile",
                accepted_profiles=self.manager.profile_names,
            )
        return self.manager.stage_profile(spec.name, profile)

    async def _run(self, spec: StageSpec, raw_input: Any, profile: Optional[str], timeout: Optional[float]) -> Artifact:
        request = validate_request(spec, raw_input)
        stage_profile = self.resolve_profile(spec, profile)

        prepared = await self.budgets.prepare(request, stage_profile)
        variables = self.build_variables(spec, request, prepared, stage_profile)

        limit = timeout if timeout is not None else stage_profile.timeout
        response = await self._call_model(spec, variables, stage_profile, limit)

        content = (response.content or "").strip()
        if not content:
            raise EmptyResponse(f"{spec.name} received an empty response from the model", model=stage_profile.model)
        return Artifact(text=ensure_trailer(content, spec.trailer), stage=spec.name)

    def build_variables(self, spec: StageSpec, request: StageRequest, prepared: Dict[str, str], profile: StageProfile) -> Dict[str, Any]:
        variables: Dict[str, Any] = dict(profile.variables)
        for name, value in request.fields.items():
            if isinstance(value, list):
                variables[name] = list(value)
        variables.update(prepared)
        variables["trailer"] = spec.trailer
        variables["sections"] = text_sections(spec, prepared)
        return variables

    async def _call_model(self, spec: StageSpec, variables: Dict[str, Any], profile: StageProfile, limit: float) -> ModelResponse:
        t0 = time.perf_counter()
        success = False
        try:
            # the worker thread is not cancelled on timeout; its late result is dropped
            response = await asyncio.wait_for(
                asyncio.to_thread(self.manager.call, spec.name, variables, profile.profile),
                timeout=limit,
            )
            success = True
            return response
        except (asyncio.TimeoutError, ModelTimeout) as e:
            raise StageTimeout(spec.name, time.perf_counter() - t0, limit) from e
        except ModelRateLimited as e:
            raise UpstreamRateLimited(
                f"Upstream model provider is rate limiting requests: {e}",
                upstream_status=e.status_code,
            ) from e
        except ModelError as e:
            raise UpstreamError(f"Model call failed: {e}", upstream_status=e.status_code) from e
        finally:
            # recorded once the race is decided, so a dropped late result never counts
            self.manager.track_stats(spec.name, (time.perf_counter() - t0) * 1000, success)
