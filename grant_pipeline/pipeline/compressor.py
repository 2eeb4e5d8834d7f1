"""
Compressor: condenses oversized upstream artifacts so a downstream stage fits
its input budget.

Both implementations run the ``content_summarization`` stage, either in
process through the StageExecutor or over HTTP against the sibling endpoint,
and both run under their own deadline. Any failure surfaces as
CompressionFailure, which the BudgetEnforcer turns into plain truncation.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, TYPE_CHECKING
import asyncio
import logging
import re
import time

import httpx

from .errors import CompressionFailure, EmptyResponse, StageError, StageTimeout, StageValidationError, UpstreamError
from .stages import API_PREFIX, CONTENT_SUMMARIZATION, FieldSpec

if TYPE_CHECKING:
    from ..models.manager import ModelManager
    from .executor import StageExecutor

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "proposal_input"


def _summarization_field(name: str) -> Optional[FieldSpec]:
    for field in CONTENT_SUMMARIZATION.fields:
        if field.is_text and name in (field.name, *field.aliases) and name != "content_type":
            return field
    return None


class BaseCompressor(ABC):
    stage = CONTENT_SUMMARIZATION

    def __init__(self, timeout: float, content_type: str = DEFAULT_CONTENT_TYPE):
        self.timeout = timeout
        self.content_type = content_type

    def _payload(self, named_texts: Mapping[str, str]) -> Dict[str, str]:
        payload: Dict[str, str] = {}
        for name, text in named_texts.items():
            field = _summarization_field(name)
            if field is None:
                raise StageValidationError(f"Cannot compress unknown field '{name}'", field=name)
            if not isinstance(text, str) or not text.strip():
                continue
            if field.name in payload:
                payload[field.name] = f"{payload[field.name]}\n\n{text}"
            else:
                payload[field.name] = text

        if not payload:
            raise StageValidationError("At least one non-empty text is required for compression")
        payload["content_type"] = self.content_type
        return payload

    async def compress(self, named_texts: Mapping[str, str]) -> str:
        payload = self._payload(named_texts)
        original = sum(len(v) for k, v in payload.items() if k != "content_type")
        t0 = time.perf_counter()
        try:
            condensed = await self._condense(payload)
        except StageError as e:
            raise CompressionFailure(f"Compression failed: {e}", cause=e.kind) from e

        logger.info(
            f"Compressed {original} chars to {len(condensed)} chars in {time.perf_counter() - t0:.2f}s"
        )
        return condensed

    @abstractmethod
    async def _condense(self, payload: Dict[str, str]) -> str:
        raise NotImplementedError

    async def aclose(self):
        """Release whatever the compressor holds open; called once at shutdown."""

    def split_sections(self, condensed: str, names: List[str]) -> Dict[str, str]:
        """
        Recover per-field sections from a condensation that kept its
        ``LABEL:`` headers. Names whose header is absent are left out.
        """
        by_label: Dict[str, List[str]] = {}
        for name in names:
            field = _summarization_field(name)
            if field is not None:
                by_label.setdefault(field.label.upper(), []).append(name)
        if not by_label:
            return {}

        alternation = "|".join(re.escape(label) for label in sorted(by_label, key=len, reverse=True))
        header = re.compile(rf"^[ \t#>*_]*({alternation})[ \t*_]*:[ \t*_]*", re.IGNORECASE | re.MULTILINE)
        matches = list(header.finditer(condensed))

        sections: Dict[str, str] = {}
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(condensed)
            body = condensed[match.end():end].strip()
            if not body:
                continue
            for name in by_label.get(match.group(1).upper(), []):
                sections.setdefault(name, body)
        return sections


class Compressor(BaseCompressor):
    """Runs the summarization stage in process with a shorter deadline than its callers."""

    def __init__(self, executor: "StageExecutor", timeout: float, content_type: str = DEFAULT_CONTENT_TYPE):
        super().__init__(timeout, content_type)
        self.executor = executor

    async def _condense(self, payload: Dict[str, str]) -> str:
        result = await self.executor.execute(self.stage, payload, timeout=self.timeout)
        if result.error is not None:
            raise result.error
        return result.output.text


class HttpCompressor(BaseCompressor):
    """Calls the sibling summarization endpoint like any other client would."""

    def __init__(self, base_url: str, timeout: float, client: Optional[httpx.AsyncClient] = None, content_type: str = DEFAULT_CONTENT_TYPE):
        super().__init__(timeout, content_type)
        self.url = f"{base_url.rstrip('/')}{API_PREFIX}{self.stage.route}"
        # one connection pool for the life of the app unless the caller brings its own
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, payload: Dict[str, str]) -> httpx.Response:
        return await self.client.post(self.url, json=payload, timeout=self.timeout)

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def _condense(self, payload: Dict[str, str]) -> str:
        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._post(payload), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise StageTimeout(self.stage.name, time.perf_counter() - t0, self.timeout) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Summarization endpoint unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200:
            message = body.get("error") if isinstance(body, dict) else None
            raise UpstreamError(
                f"Summarization endpoint returned {response.status_code}: {message or response.text[:200]}",
                upstream_status=response.status_code,
            )

        output = body.get("output") if isinstance(body, dict) else None
        if not isinstance(output, str) or not output.strip():
            raise EmptyResponse("Summarization endpoint returned no output")
        return output


def build_compressor(manager: "ModelManager", executor: "StageExecutor", client: Optional[httpx.AsyncClient] = None) -> BaseCompressor:
    settings = manager.compression
    mode = settings.get("mode", "in_process")
    timeout = float(settings.get("timeout", 8))

    if mode == "in_process":
        return Compressor(executor, timeout=timeout)
    if mode == "http":
        if not settings.get("base_url"):
            raise ValueError("compression.mode 'http' needs compression.base_url")
        return HttpCompressor(settings["base_url"], timeout=timeout, client=client)
    raise ValueError(f"Unknown compression mode: {mode}")
