"""Transport types for model calls."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass
class OutputSchema:
    """JSON schema the provider should constrain its output to."""

    name: str
    description: str
    schema: dict[str, Any]


@dataclass
class LLMRequest:
    system_prompt: str
    user_message: str
    max_tokens: int = 1024
    temperature: float = 0.0
    output_schema: Optional[OutputSchema] = None


@dataclass
class LLMResponse:
    content: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


@dataclass
class AttemptLog:
    provider: str
    model: str
    latency_ms: int
    success: bool
    error: Optional[str] = None


@dataclass
class LLMServiceResult:
    response: LLMResponse
    attempts: list[AttemptLog] = field(default_factory=list)


class LLMProvider(Protocol):
    """One model endpoint. Raises on any failure."""

    name: str

    async def call(self, request: LLMRequest) -> LLMResponse: ...


class LLMCaller(Protocol):
    """Anything with the failover service's ``call`` signature."""

    async def call(self, request: LLMRequest) -> LLMServiceResult: ...
