"""Model-call substrate and provider-failover service."""

from negotiation.llm.providers import LangChainProvider, build_provider, create_chat_model
from negotiation.llm.service import ProviderFailoverService
from negotiation.llm.types import (
    AttemptLog,
    LLMCaller,
    LLMProvider,
    LLMRequest,
    LLMResponse,
    LLMServiceResult,
    OutputSchema,
)

__all__ = [
    "AttemptLog",
    "LLMCaller",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "LLMServiceResult",
    "LangChainProvider",
    "OutputSchema",
    "ProviderFailoverService",
    "build_provider",
    "create_chat_model",
]
