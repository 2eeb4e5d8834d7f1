"""
Request models for the stage endpoints.

One pydantic model per StageSpec, generated from its FieldSpecs so the
catalogue stays the single description of what a stage accepts. Required
text fields are strict non-empty strings and required list fields are
non-empty arrays of non-empty strings. Optional fields that arrive empty or
with the wrong type are dropped before validation instead of rejected.
"""

from functools import lru_cache
from typing import Annotated, Any, List, Optional, Type

from pydantic import (
    AliasChoices, AliasPath, BaseModel, ConfigDict, Field, StrictStr, StringConstraints,
    create_model, field_validator, model_validator,
)

from .stages import FieldSpec, StageSpec

NonEmptyStr = Annotated[StrictStr, StringConstraints(strip_whitespace=True, min_length=1)]


class StageRequestModel(BaseModel):
    """Base for the generated request models."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # a null field counts as absent, so the next alias gets its turn
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


def _drop_unusable_text(cls, value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _drop_unusable_list(cls, value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    items = [item for item in value if isinstance(item, str) and item.strip()]
    return items or None


def _alias(field: FieldSpec) -> Optional[AliasChoices]:
    if not field.aliases:
        return None
    choices = [AliasPath(*alias.split(".")) if "." in alias else alias for alias in field.aliases]
    return AliasChoices(field.name, *choices)


def _definition(field: FieldSpec):
    if field.is_text:
        annotation: Any = NonEmptyStr if field.required else Optional[str]
    else:
        annotation = List[NonEmptyStr] if field.required else Optional[List[str]]

    constraints = {"min_length": 1, "strict": True} if field.required and not field.is_text else {}
    info = Field(
        ... if field.required else None,
        description=field.label,
        validation_alias=_alias(field),
        **constraints,
    )
    return annotation, info


def _model_name(spec: StageSpec) -> str:
    return "".join(part.capitalize() for part in spec.name.split("_")) + "Request"


@lru_cache(maxsize=None)
def request_model(spec: StageSpec) -> Type[StageRequestModel]:
    """The request body model for ``spec``, built once per stage."""
    validators = {}
    optional_text = [f.name for f in spec.optional_fields if f.is_text]
    optional_lists = [f.name for f in spec.optional_fields if not f.is_text]
    if optional_text:
        validators["drop_unusable_text"] = field_validator(*optional_text, mode="before")(_drop_unusable_text)
    if optional_lists:
        validators["drop_unusable_list"] = field_validator(*optional_lists, mode="before")(_drop_unusable_list)

    return create_model(
        _model_name(spec),
        __base__=StageRequestModel,
        __doc__=f"Request body for the {spec.title} stage.",
        __validators__=validators,
        **{field.name: _definition(field) for field in spec.fields},
    )
