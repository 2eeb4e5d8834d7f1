from __future__ import annotations
from typing import Dict, Any, Optional
import time
from os import getenv

from openai import OpenAI
from openai import APIError, APIStatusError, APITimeoutError, APIConnectionError, RateLimitError

from .base import ModelProvider, ChatRequest, ModelResponse, ModelError, ModelRateLimited, ModelTimeout


class OpenAIProvider(ModelProvider):
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, default_headers: Optional[Dict[str, str]] = None, timeout: float = 60.0, **kwargs):
        # callers own retry decisions, the SDK must not retry behind their back
        kwargs.setdefault("max_retries", 0)
        self.client = OpenAI(
            base_url=base_url,
            api_key=api_key or getenv("OPENAI_API_KEY"),
            default_headers=default_headers or {},
            timeout=timeout,
            **kwargs
        )
        self.base_url = base_url
        self.timeout = timeout

    def chat(self, req: ChatRequest) -> ModelResponse:
        completion_params = {
            "model": req.model,
            "messages": req.messages,
            **dict(req.params or {})
        }

        t0 = time.perf_counter()
        try:
            response = self.client.chat.completions.create(**completion_params)
        except APITimeoutError as e:
            raise ModelTimeout(f"OpenAI timeout: {e}", status_code=408) from e
        except RateLimitError as e:
            raise ModelRateLimited(f"OpenAI rate limit: {e}", status_code=429) from e
        except APIStatusError as e:
            raise ModelError(f"OpenAI API error: {e}", status_code=e.status_code) from e
        except APIConnectionError as e:
            raise ModelError(f"OpenAI connection error: {e}") from e
        except APIError as e:
            raise ModelError(f"OpenAI API error: {e}") from e
        except Exception as e:
            raise ModelError(f"OpenAI provider error: {e}") from e

        dt = time.perf_counter() - t0

        # only the first candidate is ever used
        choices = getattr(response, "choices", None) or []
        content = ""
        if choices:
            message = getattr(choices[0], "message", None)
            content = getattr(message, "content", None) or ""

        meta = {
            "provider": "openai",
            "model": getattr(response, 'model', req.model),
            "latency": dt,
            "base_url": self.base_url or "https://api.openai.com/v1",
            "candidates": len(choices),
        }

        if getattr(response, 'usage', None):
            try:
                meta["usage"] = response.usage.model_dump()
            except AttributeError:
                meta["usage"] = {
                    "prompt_tokens": getattr(response.usage, 'prompt_tokens', None),
                    "completion_tokens": getattr(response.usage, 'completion_tokens', None),
                    "total_tokens": getattr(response.usage, 'total_tokens', None)
                }

        if choices:
            meta["finish_reason"] = getattr(choices[0], 'finish_reason', None)

        if hasattr(response, 'id'):
            meta["id"] = response.id

        return ModelResponse(content=content, raw=response, meta=meta)

    def health_check(self) -> bool:
        """SYNCHRONOUS health check - blocks until complete"""
        try:
            _ = self.client.models.list()
            return True
        except Exception:
            return False

    def cleanup(self):
        self.client.close()
