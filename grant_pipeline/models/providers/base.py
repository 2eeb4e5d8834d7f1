from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, List

#unified model errors
class ModelError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

class ModelTimeout(ModelError): ...
class ModelRateLimited(ModelError): ...

@dataclass(frozen=True)
class ChatRequest:
    model: str
    messages: List[Dict[str, Any]]
    params: Dict[str, Any] | None = None #temperature, max_tokens, ...

@dataclass(frozen=True)
class ModelResponse:
    content: str #first candidate only, "" when the provider produced nothing
    raw: Any #provider-native response obj/dict
    meta: Dict[str, Any] #timings, token counts, model, finish_reason, etc.

class ModelProvider(ABC):
    @abstractmethod
    def chat(self, req: ChatRequest) -> ModelResponse:
        raise NotImplementedError

    @abstractmethod
    def health_check(self) -> bool:
        raise NotImplementedError
