from __future__ import annotations
from typing import Any, Dict
import time
import httpx
from ollama import Client, ResponseError
from .base import ModelProvider, ChatRequest, ModelResponse, ModelError, ModelRateLimited, ModelTimeout

# openai-style parameter names -> ollama option names
_OPTION_ALIASES = {"max_tokens": "num_predict"}

class OllamaProvider(ModelProvider):
    def __init__(self, host: str = "http://localhost:11434", request_timeout_s: float = 300, keep_alive: str = "5m"):
        self.client = Client(host=host, timeout=request_timeout_s)
        self.keep_alive = keep_alive
        self.host = host
        self.request_timeout_s = request_timeout_s

    def _options(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {_OPTION_ALIASES.get(k, k): v for k, v in params.items()}

    def chat(self, req: ChatRequest) -> ModelResponse:
        options = dict(req.params or {})
        keep_alive = options.pop('keep_alive', self.keep_alive)

        t0 = time.perf_counter()

        try:
            response = self.client.chat(
                model=req.model,
                messages=req.messages,
                options=self._options(options),
                keep_alive=keep_alive
            )
        except (httpx.ReadTimeout, httpx.ConnectTimeout) as e:
            raise ModelTimeout(f"Ollama timeout after {self.request_timeout_s}s: {e}", status_code=408) from e
        except ResponseError as e:
            status = int(getattr(e, "status_code", 0) or 0) or None
            if status == 429:
                raise ModelRateLimited(str(e), status_code=status) from e
            raise ModelError(str(e), status_code=status) from e
        except Exception as e:
            raise ModelError(f"Ollama request failed: {e}") from e

        dt = time.perf_counter() - t0

        # The ollama client is inconsistent. Sometimes it returns a dict,
        # sometimes an object. We handle both.
        content = ""
        model_name = req.model
        raw_response_dict = {}

        if isinstance(response, dict):
            raw_response_dict = response
            if isinstance(response.get('message'), dict):
                content = response['message'].get('content') or ''
            model_name = response.get('model', req.model)
        elif hasattr(response, 'message') and hasattr(response.message, 'content'):
            content = response.message.content or ''
            model_name = getattr(response, 'model', req.model)
            try:
                raw_response_dict = response.__dict__
            except AttributeError:
                raw_response_dict = {}
        else:
            raise ModelError(f"Received unexpected response structure from Ollama: {response}")

        meta = {"provider": "ollama", "model": model_name, "latency": dt}
        for key in ['total_duration', 'prompt_eval_count', 'eval_count', 'eval_duration']:
            if key in raw_response_dict:
                meta[key] = raw_response_dict[key]

        return ModelResponse(content=content, raw=response, meta=meta)

    def health_check(self) -> bool:
        try:
            self.client.list()
            return True
        except Exception:
            return False
