"""
Stage catalogue.

Each stage is described once by a StageSpec: the route it is served on, the
fields it accepts (with which of them are required and which earlier stage
normally produces them) and the fixed trailer appended to its output.
Numeric knobs (model, temperature, budgets, timeouts) live in config.yaml and
are resolved per profile by the ModelManager.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

# every stage endpoint is served under this prefix
API_PREFIX = "/api/v1/stages"


class FieldKind(Enum):
    TEXT = "text"
    TEXT_LIST = "text_list"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    aliases: Tuple[str, ...] = ()  # dotted aliases reach into nested objects
    sources: Tuple[str, ...] = ()  # stages whose output normally fills this field; empty means caller-supplied

    @property
    def is_text(self) -> bool:
        return self.kind is FieldKind.TEXT


@dataclass(frozen=True)
class StageSpec:
    name: str
    route: str
    title: str
    fields: Tuple[FieldSpec, ...]
    trailer: Optional[str] = None
    require_any: Tuple[str, ...] = ()
    missing_hint: Optional[str] = None

    def field(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field '{name}'")

    @property
    def required_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.required)

    @property
    def optional_fields(self) -> Tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if not f.required)


def _trailer(text: str) -> str:
    return f"→ {text}"


INTAKE_ANALYSIS = StageSpec(
    name="intake_analysis",
    route="/intake-analysis",
    title="Intake Analysis",
    fields=(
        FieldSpec("text", "Text to analyze", required=True, aliases=("rfp_text",)),
        FieldSpec("context", "Context"),
    ),
    trailer=_trailer("Next step: Clinical Context Builder. Are you ready to continue?"),
)

CONTEXT_SYNTHESIS = StageSpec(
    name="context_synthesis",
    route="/context-synthesis",
    title="Context Synthesis",
    fields=(
        FieldSpec("therapeutic_area", "Therapeutic Area", required=True),
        FieldSpec("rfp_summary", "RFP Context", sources=("intake_analysis",)),
        FieldSpec("meeting_notes", "Meeting Notes"),
        FieldSpec("additional_context", "Additional Context"),
    ),
    trailer=_trailer("Next step: Format Recommender. Are you ready to continue?"),
)

FORMAT_RECOMMENDATION = StageSpec(
    name="format_recommendation",
    route="/format-recommendation",
    title="Format Recommendation",
    fields=(
        FieldSpec("educational_gaps", "Educational Gaps", kind=FieldKind.TEXT_LIST, required=True),
        FieldSpec("product_lifecycle_stage", "Product Lifecycle Stage", required=True),
        FieldSpec("therapeutic_area", "Therapeutic Area"),
        FieldSpec("clinical_context", "Clinical Context", sources=("context_synthesis",)),
        FieldSpec("timeline_or_budget_notes", "Timeline/Budget Notes"),
    ),
    trailer=_trailer("Next step: Proposal Composer. Are you ready to continue?"),
)

PROPOSAL_OUTLINE = StageSpec(
    name="proposal_outline",
    route="/proposal-outline",
    title="Proposal Outline",
    fields=(
        FieldSpec("rfp_summary", "RFP Summary", required=True),
        FieldSpec("clinical_context", "Clinical Context", required=True),
        FieldSpec("format_recommendations", "Format Recommendations", required=True, sources=("format_recommendation",)),
        FieldSpec("custom_notes", "Custom Notes"),
    ),
    trailer=_trailer("Outline Complete. Ready to proceed with detailed proposal development."),
)

PROPOSAL_COMPOSITION = StageSpec(
    name="proposal_composition",
    route="/proposal-composition",
    title="Proposal Composition",
    fields=(
        FieldSpec("rfp_summary", "RFP Summary", required=True),
        FieldSpec("clinical_context", "Clinical Context", required=True),
        FieldSpec("format_recommendations", "Format Recommendations", required=True, sources=("format_recommendation",)),
        FieldSpec("sections_requested", "Sections Requested", kind=FieldKind.TEXT_LIST, required=True),
        FieldSpec("custom_notes", "Custom Notes"),
    ),
    trailer=_trailer("Next step: Proposal Reviewer. Are you ready to continue?"),
)

PROPOSAL_COMPOSITION_PART1 = StageSpec(
    name="proposal_composition_part1",
    route="/proposal-composition/part1",
    title="Proposal Composition (Part 1)",
    fields=(
        FieldSpec("rfp_summary", "RFP", required=True),
        FieldSpec("clinical_context", "Clinical", required=True),
        FieldSpec("format_recommendations", "Format", required=True, sources=("format_recommendation",)),
        FieldSpec("custom_notes", "Notes"),
    ),
    trailer=_trailer("Part 1 Complete. Ready for Part 2?"),
)

PROPOSAL_COMPOSITION_PART2 = StageSpec(
    name="proposal_composition_part2",
    route="/proposal-composition/part2",
    title="Proposal Composition (Part 2)",
    fields=(
        FieldSpec("format_recommendations", "Format", required=True),
        FieldSpec("part1_content", "Part 1", required=True, sources=("proposal_composition_part1",)),
        FieldSpec("rfp_summary", "RFP"),
        FieldSpec("clinical_context", "Clinical"),
        FieldSpec("custom_notes", "Notes"),
    ),
    trailer=_trailer("Complete Grant Proposal Generated! Next step: Proposal Reviewer."),
)

PROPOSAL_REVIEW = StageSpec(
    name="proposal_review",
    route="/proposal-review",
    title="Proposal Review",
    fields=(
        FieldSpec(
            "proposal_text", "Proposal Text to Review", required=True,
            aliases=("proposal_content", "proposal.text"),
            sources=("proposal_composition", "proposal_composition_part2"),
        ),
        FieldSpec("rfp_context", "RFP Context"),
        FieldSpec("section_name", "Section Name"),
    ),
    trailer=_trailer("This concludes the review. You may now revise or finalize the proposal."),
    missing_hint='Try using "proposal_text" or "proposal_content" as the field name',
)

CONTENT_SUMMARIZATION = StageSpec(
    name="content_summarization",
    route="/content-summarization",
    title="Content Summarization",
    fields=(
        FieldSpec("rfp_analysis", "RFP ANALYSIS", aliases=("rfp_summary",)),
        FieldSpec("clinical_context", "CLINICAL CONTEXT"),
        FieldSpec("format_recommendations", "FORMAT RECOMMENDATIONS"),
        FieldSpec("meeting_notes", "MEETING NOTES"),
        FieldSpec("part1_content", "PART 1 CONTENT"),
        FieldSpec("custom_notes", "CUSTOM NOTES"),
        FieldSpec("content_type", "CONTENT TYPE"),
    ),
    require_any=(
        "rfp_analysis", "clinical_context", "format_recommendations",
        "meeting_notes", "part1_content", "custom_notes",
    ),
)


STAGES: Dict[str, StageSpec] = {
    spec.name: spec
    for spec in (
        INTAKE_ANALYSIS,
        CONTEXT_SYNTHESIS,
        FORMAT_RECOMMENDATION,
        PROPOSAL_OUTLINE,
        PROPOSAL_COMPOSITION,
        PROPOSAL_COMPOSITION_PART1,
        PROPOSAL_COMPOSITION_PART2,
        PROPOSAL_REVIEW,
        CONTENT_SUMMARIZATION,
    )
}


def get_stage(name: str) -> StageSpec:
    try:
        return STAGES[name]
    except KeyError:
        raise ValueError(f"Unknown stage: {name}") from None
