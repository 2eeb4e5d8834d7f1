"""
Pipeline order and the handoff contract between stages.

The server never chains stages itself: every stage is independently callable
and ordering is a contract kept by the caller. This module states that
contract (which stage may follow which, and which field of the next stage
consumes the previous output), checks at import time that the stage catalogue
honours it, and offers PipelineRun as a client-side helper that walks it.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging

from .stages import API_PREFIX, STAGES, FieldSpec, StageSpec, get_stage
from .types import Artifact, StageResult

logger = logging.getLogger(__name__)

INITIAL_STAGE = "intake_analysis"
TERMINAL_STAGE = "proposal_review"

TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "intake_analysis": ("context_synthesis",),
    "context_synthesis": ("format_recommendation",),
    "format_recommendation": ("proposal_composition", "proposal_composition_part1"),
    "proposal_composition": ("proposal_review",),
    "proposal_composition_part1": ("proposal_composition_part2",),
    "proposal_composition_part2": ("proposal_review",),
    "proposal_review": (),
}

# callable on their own but outside the linear flow
AUXILIARY_STAGES = ("proposal_outline", "content_summarization")


class PipelineContractError(RuntimeError):
    pass


def successors(stage: str) -> Tuple[str, ...]:
    if stage not in TRANSITIONS:
        raise PipelineContractError(f"'{stage}' is not part of the pipeline")
    return TRANSITIONS[stage]


def consuming_field(previous: str, spec: StageSpec) -> FieldSpec:
    """The field of ``spec`` that takes the output of ``previous``."""
    for field in spec.fields:
        if previous in field.sources:
            return field
    raise PipelineContractError(f"{spec.name} has no field fed by {previous}")


def validate_handoff_contract(stages: Optional[Dict[str, StageSpec]] = None, transitions: Optional[Dict[str, Tuple[str, ...]]] = None):
    """
    Every required field of a successor must be fed either by its predecessor's
    output or by the caller, and every successor must consume its predecessor's
    output through some field.
    """
    stages = STAGES if stages is None else stages
    transitions = TRANSITIONS if transitions is None else transitions

    for spec in stages.values():
        for field in spec.fields:
            unknown = [s for s in field.sources if s not in stages]
            if unknown:
                raise PipelineContractError(f"{spec.name}.{field.name} is fed by unknown stage(s) {unknown}")

    for previous, nexts in transitions.items():
        if previous not in stages:
            raise PipelineContractError(f"Transition from unknown stage '{previous}'")
        for name in nexts:
            if name not in stages:
                raise PipelineContractError(f"Transition {previous} -> unknown stage '{name}'")
            spec = stages[name]
            consuming_field(previous, spec)
            for field in spec.required_fields:
                if field.sources and previous not in field.sources:
                    raise PipelineContractError(
                        f"{name}.{field.name} needs output of {list(field.sources)} "
                        f"which {previous} does not produce"
                    )


def describe_stages(profiles: List[str]) -> List[Dict[str, Any]]:
    catalogue = []
    for spec in STAGES.values():
        catalogue.append({
            "name": spec.name,
            "title": spec.title,
            "route": f"{API_PREFIX}{spec.route}",
            "required": [f.name for f in spec.required_fields],
            "optional": [f.name for f in spec.optional_fields],
            "require_any": list(spec.require_any),
            "next": list(TRANSITIONS.get(spec.name, ())),
            "auxiliary": spec.name in AUXILIARY_STAGES,
            "profiles": profiles,
        })
    return catalogue


class PipelineRun:
    """
    Client-side record of one walk through the pipeline.

    Nothing here is kept by the server. ``handoff`` builds the body of the next
    request from the last output plus caller-supplied side artifacts and
    refuses to skip or reorder stages.
    """

    def __init__(self, profile: Optional[str] = None):
        self.profile = profile
        self.results: List[StageResult] = []

    def record(self, result: StageResult) -> StageResult:
        self.results.append(result)
        return result

    @property
    def last_output(self) -> Optional[Artifact]:
        if self.results and self.results[-1].ok:
            return self.results[-1].output
        return None

    @property
    def finished(self) -> bool:
        return self.last_output is not None and self.last_output.stage == TERMINAL_STAGE

    def next_stages(self) -> Tuple[str, ...]:
        if not self.results:
            return (INITIAL_STAGE,)
        if self.last_output is None:
            return ()
        return successors(self.last_output.stage)

    def handoff(self, next_stage: str, **side: Any) -> Dict[str, Any]:
        spec = get_stage(next_stage)
        body = {k: v for k, v in side.items() if v is not None}

        if not self.results:
            if next_stage != INITIAL_STAGE:
                raise PipelineContractError(f"A run starts at {INITIAL_STAGE}, not {next_stage}")
            return body

        previous = self.results[-1]
        if not previous.ok:
            raise PipelineContractError(f"Cannot continue after failed stage {previous.stage}")
        if next_stage not in successors(previous.stage):
            raise PipelineContractError(
                f"{next_stage} cannot follow {previous.stage}; expected one of {list(successors(previous.stage))}"
            )

        body[consuming_field(previous.stage, spec).name] = previous.output.text
        return body

    async def advance(self, executor, next_stage: str, **side: Any) -> StageResult:
        """Hand off, run the next stage in process and record its result."""
        body = self.handoff(next_stage, **side)
        result = await executor.execute(get_stage(next_stage), body, profile=self.profile)
        logger.debug(f"run advanced to {next_stage}: {'ok' if result.ok else result.error.kind}")
        return self.record(result)


validate_handoff_contract()
