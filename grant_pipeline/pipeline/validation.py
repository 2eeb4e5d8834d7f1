from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import StageValidationError
from .schemas import request_model
from .stages import FieldSpec, StageSpec
from .types import Artifact, CALLER, StageRequest


def _type_name(value: Any) -> str:
    return {
        dict: "object", list: "array", str: "string", bool: "boolean", type(None): "null",
    }.get(type(value), type(value).__name__)


def _field_at(spec: StageSpec, loc: Sequence[Any]) -> Optional[FieldSpec]:
    """The field an error location points at, by canonical name or by alias."""
    if not loc:
        return None
    dotted = ".".join(str(part) for part in loc)
    for field in spec.fields:
        keys = (field.name, *field.aliases)
        if dotted in keys or loc[0] in keys:
            return field
    return None


def stage_validation_error(spec: StageSpec, errors: List[Dict[str, Any]], payload: Any = None) -> StageValidationError:
    """
    Turn the first pydantic error into a StageValidationError naming the field.

    Errors arrive in field declaration order, so the first one is the first
    violated field. Locations from a FastAPI body carry a leading ``body``.
    """
    first = errors[0] if errors else {}
    loc = tuple(first.get("loc", ()))
    if loc[:1] == ("body",):
        loc = loc[1:]
    kind = first.get("type")
    value = first.get("input")

    if kind == "json_invalid":
        return StageValidationError("Request body must be valid JSON")

    field = _field_at(spec, loc)
    if field is None:
        return StageValidationError(f"Request body must be a JSON object, but received: {_type_name(value)}")

    pretty = f"'{field.name}'"
    item_error = len(loc) > 1 and isinstance(loc[-1], int)

    if kind == "missing" or (value is None and not item_error):
        return StageValidationError(
            f"{pretty} field is required but was not provided",
            field=field.name,
            received_fields=sorted(payload) if isinstance(payload, dict) else None,
            suggestion=spec.missing_hint,
        )

    if field.is_text:
        if kind == "string_too_short":
            return StageValidationError(
                f"{pretty} field is required and must be a non-empty string",
                field=field.name,
                text_length=len(value) if isinstance(value, str) else None,
            )
        return StageValidationError(
            f"{pretty} must be a string, but received: {_type_name(value)}",
            field=field.name,
        )

    if item_error:
        return StageValidationError(f"{pretty} must contain only non-empty strings", field=field.name)
    return StageValidationError(
        f"{pretty} field is required and must be a non-empty array of strings",
        field=field.name,
    )


def validate_request(spec: StageSpec, payload: Any) -> StageRequest:
    """
    Build a StageRequest from a JSON payload or an already parsed request model.

    Textual values become caller Artifacts; list values are kept as lists of
    trimmed strings.
    """
    try:
        body = request_model(spec).model_validate(payload)
    except ValidationError as e:
        raise stage_validation_error(spec, e.errors(), payload) from None

    fields: Dict[str, Any] = {}
    for field in spec.fields:
        value = getattr(body, field.name)
        if value is None:
            continue
        fields[field.name] = Artifact(text=value, stage=CALLER) if field.is_text else list(value)

    if spec.require_any and not any(name in fields for name in spec.require_any):
        received = payload if isinstance(payload, dict) else body.model_fields_set
        names = ", ".join(spec.require_any)
        raise StageValidationError(
            f"At least one content field ({names}) is required",
            field=spec.require_any[0],
            accepted_fields=list(spec.require_any),
            received_fields=sorted(received),
        )

    return StageRequest(stage=spec.name, fields=fields)


def text_sections(spec: StageSpec, values: Dict[str, str]) -> List[Tuple[str, str]]:
    """(label, text) pairs in declaration order for every textual field present."""
    return [
        (field.label, values[field.name])
        for field in spec.fields
        if field.is_text and field.name in values
    ]
