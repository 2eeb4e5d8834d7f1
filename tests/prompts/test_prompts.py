# tests/prompts/test_prompts.py

import pytest
from pathlib import Path
import tempfile
import shutil

from grant_pipeline.models.manager import ModelManager
from grant_pipeline.models.prompts import PromptManager
from grant_pipeline.pipeline.executor import StageExecutor
from grant_pipeline.pipeline.stages import STAGES
from grant_pipeline.pipeline.validation import validate_request


PACKAGED_PROMPTS = Path(__file__).parents[2] / "grant_pipeline" / "prompts"


@pytest.fixture
def temp_prompts_dir():
    """Create a temporary prompts directory with test data"""
    temp_dir = tempfile.mkdtemp()
    prompts_path = Path(temp_dir)

    intake_v1 = prompts_path / "stages" / "intake" / "v1"
    intake_v1.mkdir(parents=True)

    (intake_v1 / "config.yaml").write_text("""
description: "RFP breakdown"
""")

    (intake_v1 / "system.j2").write_text("""You review RFPs for medical education grants.

Report:
1. Funder and scope
2. Deadlines
End with: {{ trailer }}""")

    (intake_v1 / "user.j2").write_text("""RFP: {{ text }}
{% if context is defined %}
Context: {{ context }}
{% endif %}""")

    # prompt without config file
    review_v1 = prompts_path / "stages" / "review" / "v1"
    review_v1.mkdir(parents=True)
    (review_v1 / "system.j2").write_text("You review grant proposals.")
    (review_v1 / "user.j2").write_text("Review: {{ proposal_text }}")

    minimal_v1 = prompts_path / "minimal" / "test" / "v1"
    minimal_v1.mkdir(parents=True)
    (minimal_v1 / "config.yaml").write_text("")  # Empty config
    (minimal_v1 / "system.j2").write_text("Simple system prompt.")
    (minimal_v1 / "user.j2").write_text("User: {{ input }}")

    yield prompts_path

    shutil.rmtree(temp_dir)


@pytest.fixture
def manager(temp_prompts_dir):
    """Create a PromptManager with test data"""
    return PromptManager(temp_prompts_dir)


# ============ Prompt Loading Tests ============

class TestPromptLoading:
    def test_load_valid_prompt_with_config(self, manager):
        """Load a prompt that exists with config file"""
        config = manager.load_prompt("stages/intake@v1")

        assert config.name == "stages/intake"
        assert config.version == "v1"
        assert config.description == "RFP breakdown"
        assert "review rfps" in config.system_template.lower()
        assert "{{ text }}" in config.user_template

    def test_load_prompt_without_config(self, manager):
        config = manager.load_prompt("stages/review@v1")

        assert config.name == "stages/review"
        assert config.description is None

    def test_load_prompt_with_empty_config(self, manager):
        config = manager.load_prompt("minimal/test@v1")
        assert config.description is None

    def test_load_missing_prompt(self, manager):
        """Fail clearly when prompt doesn't exist"""
        with pytest.raises(FileNotFoundError, match="Prompt not found"):
            manager.load_prompt("stages/intake@v99")

    def test_load_missing_system_template(self, temp_prompts_dir, manager):
        broken_prompt = temp_prompts_dir / "broken" / "test" / "v1"
        broken_prompt.mkdir(parents=True)
        (broken_prompt / "user.j2").write_text("User prompt")

        with pytest.raises(FileNotFoundError, match="Template file not found"):
            manager.load_prompt("broken/test@v1")

    def test_invalid_reference_format(self, manager):
        with pytest.raises(ValueError, match="Invalid prompt reference"):
            manager.load_prompt("stages/intake")  # Missing version

    def test_caching(self, manager):
        config1 = manager.load_prompt("stages/intake@v1")
        config2 = manager.load_prompt("stages/intake@v1")

        assert config1 is config2  # Same object, not just equal
        assert config1.ref == "stages/intake@v1"

    def test_clear_cache(self, manager):
        config1 = manager.load_prompt("stages/intake@v1")
        assert "stages/intake@v1" in manager._cache

        manager.clear_cache()
        assert manager._cache == {}

        config2 = manager.load_prompt("stages/intake@v1")
        assert config1 is not config2
        assert config1.name == config2.name


# ============ Prompt Rendering Tests ============

class TestPromptRendering:
    def test_render_with_all_variables(self, manager):
        messages = manager.render(
            "stages/intake@v1",
            {"text": "Oncology CME RFP", "context": "Q3 deadline", "trailer": "→ Next step"},
        )

        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[0]["content"].endswith("End with: → Next step")
        assert "Oncology CME RFP" in messages[1]["content"]
        assert "Q3 deadline" in messages[1]["content"]

    def test_render_with_only_required_variables(self, manager):
        messages = manager.render("stages/intake@v1", {"text": "RFP", "trailer": "→ Next"})

        assert "RFP" in messages[1]["content"]
        assert "Context:" not in messages[1]["content"]

    def test_render_missing_required_variable(self, manager):
        """Fail clearly when required variable is missing"""
        with pytest.raises(ValueError, match="Missing required variable"):
            manager.render("stages/intake@v1", {"context": "no text"})

    def test_render_strips_whitespace(self, manager):
        messages = manager.render("minimal/test@v1", {"input": "  padded  "})
        assert messages[1]["content"] == "User:   padded"

    def test_prompt_manager_invalid_directory(self):
        with pytest.raises(FileNotFoundError, match="Prompts dir not found"):
            PromptManager(Path("/nonexistent/directory"))

    def test_multiple_prompt_versions(self, temp_prompts_dir, manager):
        review_v2 = temp_prompts_dir / "stages" / "review" / "v2"
        review_v2.mkdir(parents=True)
        (review_v2 / "system.j2").write_text("You are a strict grant reviewer.")
        (review_v2 / "user.j2").write_text("Strict review: {{ proposal_text }}")

        v1 = manager.render("stages/review@v1", {"proposal_text": "draft"})
        v2 = manager.render("stages/review@v2", {"proposal_text": "draft"})

        assert v1[0]["content"] != v2[0]["content"]
        assert "Strict review: draft" in v2[1]["content"]


# ============ Packaged stage prompts ============

def minimal_payload(spec):
    payload = {}
    for field in spec.required_fields:
        payload[field.name] = f"{field.name} value" if field.is_text else [f"{field.name} item"]
    if spec.require_any:
        payload[spec.require_any[0]] = "content value"
    return payload


def full_payload(spec):
    return {
        field.name: f"{field.name} value" if field.is_text else [f"{field.name} item"]
        for field in spec.fields
    }


class TestPackagedPrompts:
    """Every stage template must render under every profile with minimal and full inputs"""

    @pytest.fixture(scope="class")
    def model_manager(self):
        return ModelManager()

    @pytest.mark.parametrize("stage", sorted(STAGES))
    @pytest.mark.parametrize("build", [minimal_payload, full_payload])
    def test_stage_prompt_renders(self, model_manager, stage, build):
        spec = STAGES[stage]
        executor = StageExecutor(model_manager)
        request = validate_request(spec, build(spec))
        prepared = {name: artifact.text for name, artifact in request.text_fields().items()}

        for profile in model_manager.profile_names:
            stage_profile = model_manager.stage_profile(stage, profile)
            variables = executor.build_variables(spec, request, prepared, stage_profile)
            system, user = model_manager.prompts.render(stage_profile.prompt_ref, variables)

            assert system["content"] and user["content"]
            rendered = system["content"] + user["content"]
            for value in prepared.values():
                assert value in rendered
            if spec.trailer:
                assert system["content"].endswith(spec.trailer)

    def test_summarization_keeps_labels(self, model_manager):
        messages = model_manager.prompts.render("stages/content_summarization@v1", {
            "sections": [("RFP ANALYSIS", "long rfp"), ("CONTENT TYPE", "proposal_input")],
            "content_type": "proposal_input",
        })
        assert "RFP ANALYSIS:\nlong rfp" in messages[1]["content"]
        assert "CONTENT TYPE:" not in messages[1]["content"]

    def test_packaged_dir_matches_manager_default(self, model_manager):
        assert model_manager.prompts.prompts_dir.resolve() == PACKAGED_PROMPTS.resolve()
