import asyncio
import pytest
from dataclasses import replace

from grant_pipeline.models.providers.base import ModelResponse
from grant_pipeline.pipeline.errors import UpstreamError
from grant_pipeline.pipeline.executor import StageExecutor
from grant_pipeline.pipeline.orchestrator import (
    INITIAL_STAGE, TERMINAL_STAGE, TRANSITIONS, PipelineContractError, PipelineRun, consuming_field,
    successors, validate_handoff_contract,
)
from grant_pipeline.pipeline.stages import STAGES, FieldSpec
from grant_pipeline.pipeline.types import Artifact, StageResult


def succeeded(stage, text="output"):
    return StageResult.succeeded(Artifact(text, stage))


class TestHandoffContract:
    def test_catalogue_satisfies_contract(self):
        validate_handoff_contract()

    def test_flow_is_linear_with_optional_split(self):
        assert INITIAL_STAGE == "intake_analysis"
        assert TERMINAL_STAGE == "proposal_review"
        assert successors("format_recommendation") == ("proposal_composition", "proposal_composition_part1")
        assert successors("proposal_composition_part1") == ("proposal_composition_part2",)
        assert successors(TERMINAL_STAGE) == ()

    def test_every_successor_consumes_its_predecessor(self):
        for previous, nexts in TRANSITIONS.items():
            for name in nexts:
                assert previous in consuming_field(previous, STAGES[name]).sources

    def test_required_field_fed_by_another_stage_breaks_contract(self):
        """
        Test: A successor requires output that its predecessor does not produce
        How: Make part 2 require a field sourced from proposal_review
        Ensures: validate_handoff_contract rejects the catalogue
        """
        part2 = STAGES["proposal_composition_part2"]
        broken = replace(part2, fields=part2.fields + (
            FieldSpec("review_notes", "Review", required=True, sources=("proposal_review",)),
        ))
        stages = {**STAGES, part2.name: broken}

        with pytest.raises(PipelineContractError, match="review_notes"):
            validate_handoff_contract(stages=stages)

    def test_successor_that_ignores_predecessor_breaks_contract(self):
        with pytest.raises(PipelineContractError, match="no field fed by"):
            validate_handoff_contract(transitions={"intake_analysis": ("format_recommendation",)})

    def test_unknown_stage_in_transitions(self):
        with pytest.raises(PipelineContractError, match="unknown stage"):
            validate_handoff_contract(transitions={"intake_analysis": ("budget_planner",)})

    def test_auxiliary_stages_are_not_in_the_flow(self):
        with pytest.raises(PipelineContractError):
            successors("content_summarization")


class TestPipelineRun:
    def test_starts_at_intake(self):
        run = PipelineRun()
        assert run.next_stages() == ("intake_analysis",)
        assert run.handoff("intake_analysis", text="RFP", context=None) == {"text": "RFP"}
        with pytest.raises(PipelineContractError, match="starts at"):
            run.handoff("context_synthesis", therapeutic_area="Oncology")

    def test_handoff_places_previous_output(self):
        run = PipelineRun()
        run.record(succeeded("intake_analysis", "RFP breakdown"))

        body = run.handoff("context_synthesis", therapeutic_area="Oncology")

        assert body == {"therapeutic_area": "Oncology", "rfp_summary": "RFP breakdown"}

    def test_refuses_skipping_stages(self):
        run = PipelineRun()
        run.record(succeeded("intake_analysis"))

        with pytest.raises(PipelineContractError, match="cannot follow"):
            run.handoff("proposal_review")

    def test_refuses_continuing_after_failure(self):
        run = PipelineRun()
        run.record(StageResult.failed("intake_analysis", UpstreamError("down")))

        assert run.last_output is None
        assert run.next_stages() == ()
        with pytest.raises(PipelineContractError, match="failed stage"):
            run.handoff("context_synthesis", therapeutic_area="Oncology")

    def test_split_composition_path(self):
        run = PipelineRun()
        run.record(succeeded("format_recommendation", "Formats"))
        part1 = run.handoff("proposal_composition_part1", rfp_summary="RFP", clinical_context="Clinical")
        assert part1["format_recommendations"] == "Formats"

        run.record(succeeded("proposal_composition_part1", "Part one"))
        part2 = run.handoff("proposal_composition_part2", format_recommendations="Formats")
        assert part2 == {"format_recommendations": "Formats", "part1_content": "Part one"}

        run.record(succeeded("proposal_composition_part2", "Part two"))
        assert run.handoff("proposal_review") == {"proposal_text": "Part two"}

    def test_full_run_in_process(self, manager, provider):
        """
        Test: Walk every stage of the linear flow in process
        How: PipelineRun.advance with a real executor and a mocked provider
        Ensures: Each stage's request carries the previous stage's output and the run ends at review
        """
        outputs = iter([
            "RFP breakdown", "Clinical narrative", "Recommended formats", "Proposal draft", "Review notes",
        ])
        provider.chat.side_effect = lambda request: ModelResponse(content=next(outputs), raw=None, meta={})
        executor = StageExecutor(manager)
        run = PipelineRun(profile="fast")

        async def walk():
            await run.advance(executor, "intake_analysis", text="Sample RFP")
            await run.advance(executor, "context_synthesis", therapeutic_area="Oncology")
            await run.advance(
                executor, "format_recommendation",
                educational_gaps=["Biomarker testing"], product_lifecycle_stage="Launch",
            )
            await run.advance(
                executor, "proposal_composition",
                rfp_summary=run.results[0].output.text,
                clinical_context=run.results[1].output.text,
                sections_requested=["Executive Summary"],
            )
            await run.advance(executor, "proposal_review")

        asyncio.run(walk())

        assert [r.ok for r in run.results] == [True] * 5
        assert run.finished
        assert run.last_output.text.startswith("Review notes")
        review_request = provider.chat.call_args_list[-1][0][0]
        assert "Proposal draft" in review_request.messages[1]["content"]
