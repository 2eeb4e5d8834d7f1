"""
Input budget enforcement.

A Budget caps how much of an upstream artifact a stage accepts for one field,
counted in characters or in whitespace-delimited words. Text within budget
passes through untouched; oversized text is either hard-truncated or, for
stages configured with the ``compress`` strategy, condensed by the Compressor
first and then sliced to fit. A failing Compressor always degrades to
truncation so a stage never fails because of compression.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, TYPE_CHECKING
import logging

from ..models.manager import StageProfile, TruncateUnit
from .types import Artifact, StageRequest

if TYPE_CHECKING:
    from .compressor import BaseCompressor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Budget:
    limit: int
    unit: str = TruncateUnit.CHARS.value

    def size(self, text: str) -> int:
        if self.unit == TruncateUnit.WORDS.value:
            return len(text.split())
        return len(text)

    def fits(self, text: str) -> bool:
        return self.size(text) <= self.limit

    def truncate(self, text: str) -> str:
        if self.fits(text):
            return text
        if self.unit == TruncateUnit.WORDS.value:
            return " ".join(text.split()[:self.limit])
        return text[:self.limit]


def budgets_for(profile: StageProfile) -> Dict[str, Budget]:
    return {name: Budget(limit, profile.truncate_unit) for name, limit in profile.budgets.items()}


class BudgetEnforcer:
    def __init__(self, compressor: Optional["BaseCompressor"] = None):
        self.compressor = compressor

    def enforce(self, artifact: Artifact, budget: Optional[Budget]) -> str:
        """Identity within budget, hard truncation beyond it."""
        if budget is None or budget.fits(artifact.text):
            return artifact.text
        truncated = budget.truncate(artifact.text)
        logger.warning(
            f"Truncated {artifact.stage} artifact from {budget.size(artifact.text)} to {budget.limit} {budget.unit}"
        )
        return truncated

    async def prepare(self, request: StageRequest, profile: StageProfile) -> Dict[str, str]:
        """Return every textual field of the request sized to the stage's budgets."""
        budgets = budgets_for(profile)
        texts = request.text_fields()
        oversized = {
            name: artifact for name, artifact in texts.items()
            if name in budgets and not budgets[name].fits(artifact.text)
        }

        condensed: Dict[str, str] = {}
        if oversized and profile.compresses:
            condensed = await self._compress(oversized, profile)

        prepared = {}
        for name, artifact in texts.items():
            if name not in oversized:
                prepared[name] = artifact.text
            elif condensed.get(name):
                prepared[name] = budgets[name].truncate(condensed[name])
            else:
                prepared[name] = self.enforce(artifact, budgets[name])
        return prepared

    async def _compress(self, oversized: Dict[str, Artifact], profile: StageProfile) -> Dict[str, str]:
        """Condense all oversized fields in one Compressor call; {} means fall back to truncation."""
        if self.compressor is None:
            logger.warning(f"{profile.stage}: compression requested but no compressor configured, truncating")
            return {}

        inputs = {name: artifact.text for name, artifact in oversized.items()}
        if profile.compress_input_cap:
            cap = Budget(profile.compress_input_cap, profile.truncate_unit)
            inputs = {name: cap.truncate(text) for name, text in inputs.items()}

        try:
            condensed = await self.compressor.compress(inputs)
        except Exception as e:
            logger.warning(f"{profile.stage}: compression failed ({type(e).__name__}: {e}), truncating instead")
            return {}

        sections = self.compressor.split_sections(condensed, list(inputs))
        # fields whose header did not survive get a slice of the whole condensation
        return {name: sections.get(name) or condensed for name in inputs}
