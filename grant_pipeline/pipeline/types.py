from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import StageError

# stage tag for text that arrived in a request rather than from a stage
CALLER = "caller"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Artifact:
    """A block of text produced by a stage (or supplied by the caller). Never mutated."""
    text: str
    stage: str
    created_at: datetime = field(default_factory=_now)

    @property
    def length(self) -> int:
        return len(self.text)


FieldValue = Union[Artifact, List[str]]


@dataclass(frozen=True)
class StageRequest:
    """Validated input to one stage: textual fields as Artifacts, list fields as plain lists."""
    stage: str
    fields: Mapping[str, FieldValue]

    def text_fields(self) -> Dict[str, Artifact]:
        return {name: value for name, value in self.fields.items() if isinstance(value, Artifact)}

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass(frozen=True)
class StageResult:
    stage: str
    output: Optional[Artifact] = None
    error: Optional[StageError] = None

    def __post_init__(self):
        if (self.output is None) == (self.error is None):
            raise ValueError("StageResult needs exactly one of output or error")

    @classmethod
    def succeeded(cls, output: Artifact) -> "StageResult":
        return cls(stage=output.stage, output=output)

    @classmethod
    def failed(cls, stage: str, error: StageError) -> "StageResult":
        return cls(stage=stage, error=error)

    @property
    def ok(self) -> bool:
        return self.output is not None
