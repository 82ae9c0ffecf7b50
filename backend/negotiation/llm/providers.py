"""LangChain-backed model providers.

Each ``LangChainProvider`` issues a single request to one chat model and
reports content, token usage and latency.  It raises on any failure; retry
and fallback are the failover service's job.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from config import get_claude_api_key, get_gemini_api_key, get_openai_api_key
from negotiation.errors import ConfigurationError
from negotiation.llm.types import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "claude", "gemini")

ChatModelFactory = Callable[[int, float], BaseChatModel]


# ---------------------------------------------------------------------------
# LLM factory
# ---------------------------------------------------------------------------


def _resolve_key(provider: str) -> str:
    """Resolve an API key for *provider* from the environment."""
    getters = {"openai": get_openai_api_key, "claude": get_claude_api_key, "gemini": get_gemini_api_key}
    getter = getters.get(provider)
    if getter is None:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")
    try:
        return getter()
    except RuntimeError as exc:
        raise ConfigurationError(str(exc)) from exc


def create_chat_model(
    provider: str, model: str, api_key: str, max_tokens: int, temperature: float
) -> BaseChatModel:
    """Create a chat model instance for the given provider/model."""
    if provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(model=model, temperature=temperature, max_tokens=max_tokens, api_key=api_key, max_retries=0)
    elif provider == "claude":
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=model, temperature=temperature, max_tokens=max_tokens, anthropic_api_key=api_key, max_retries=0
        )
    elif provider == "gemini":
        from langchain_google_genai import ChatGoogleGenerativeAI
        return ChatGoogleGenerativeAI(
            model=model, temperature=temperature, max_output_tokens=max_tokens, google_api_key=api_key
        )
    else:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class LangChainProvider:
    """Model-call substrate over a LangChain chat model.

    Chat models are built lazily per ``(max_tokens, temperature)`` pair
    because those are constructor settings on the LangChain side.
    """

    def __init__(self, name: str, model: str, factory: ChatModelFactory) -> None:
        self.name = name
        self.model = model
        self._factory = factory
        self._models: dict[tuple[int, float], BaseChatModel] = {}

    def _chat_model(self, request: LLMRequest) -> BaseChatModel:
        key = (request.max_tokens, request.temperature)
        if key not in self._models:
            self._models[key] = self._factory(request.max_tokens, request.temperature)
        return self._models[key]

    async def call(self, request: LLMRequest) -> LLMResponse:
        start = time.monotonic()
        messages = [
            SystemMessage(content=request.system_prompt),
            HumanMessage(content=request.user_message),
        ]
        llm = self._chat_model(request)

        if request.output_schema is not None:
            schema = {
                "title": request.output_schema.name,
                "description": request.output_schema.description,
                **request.output_schema.schema,
            }
            structured = llm.with_structured_output(schema, include_raw=True)
            result: dict[str, Any] = await structured.ainvoke(messages)
            raw: AIMessage | None = result.get("raw")
            parsed = result.get("parsed")
            if parsed is not None:
                content = json.dumps(parsed)
            else:
                # Let the output parser deal with whatever text came back
                logger.warning(
                    "%s structured output did not parse (%s); returning raw text",
                    self.name, result.get("parsing_error"),
                )
                content = _message_text(raw)
        else:
            raw = await llm.ainvoke(messages)
            content = _message_text(raw)

        input_tokens, output_tokens = _token_usage(raw)
        metadata = getattr(raw, "response_metadata", None) or {}
        model_name = metadata.get("model_name") or metadata.get("model") or self.model

        return LLMResponse(
            content=content,
            provider=self.name,
            model=model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=int((time.monotonic() - start) * 1000),
        )


def build_provider(provider: str, model: str) -> LangChainProvider:
    """Build a provider whose API key comes from the environment.

    Raises ``ConfigurationError`` when the provider is unknown or its key
    is missing.
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")
    api_key = _resolve_key(provider)

    def factory(max_tokens: int, temperature: float) -> BaseChatModel:
        return create_chat_model(provider, model, api_key, max_tokens, temperature)

    return LangChainProvider(name=provider, model=model, factory=factory)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _message_text(message: AIMessage | None) -> str:
    if message is None:
        return ""
    content = message.content
    # Claude returns content as a list of blocks; extract text from them
    if isinstance(content, list):
        return " ".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return content or ""


def _token_usage(message: AIMessage | None) -> tuple[int, int]:
    usage_meta = getattr(message, "usage_metadata", None)
    if usage_meta and isinstance(usage_meta, dict):
        return usage_meta.get("input_tokens", 0), usage_meta.get("output_tokens", 0)
    if usage_meta is not None:
        return getattr(usage_meta, "input_tokens", 0) or 0, getattr(usage_meta, "output_tokens", 0) or 0
    return 0, 0
