"""Application configuration helpers."""
from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load variables from .env into process environment as early as possible.
load_dotenv()


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Environment variable {name} must be set")
    return value


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    return value or None


def _int_env(name: str, default: int) -> int:
    value = _optional_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {value!r}") from exc


def _float_env(name: str, default: float | None) -> float | None:
    value = _optional_env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {value!r}") from exc


# ---------------------------------------------------------------------------
# Provider keys
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def get_openai_api_key() -> str:
    """Ensure the OpenAI API key is configured and return it."""
    return _require_env("OPENAI_API_KEY")


@lru_cache(maxsize=None)
def get_gemini_api_key() -> str:
    """Return the Gemini (Google AI Studio) API key."""

    value = _optional_env("GEMINI_API_KEY")
    if not value:
        raise RuntimeError("Set GEMINI_API_KEY to use the Gemini provider")
    return value


@lru_cache(maxsize=None)
def get_claude_api_key() -> str:
    """Return the Anthropic Claude API key."""

    value = _optional_env("CLAUDE_API_KEY") or _optional_env("ANTHROPIC_API_KEY")
    if not value:
        raise RuntimeError("Set CLAUDE_API_KEY (or ANTHROPIC_API_KEY) to use the Claude provider")
    return value


# ---------------------------------------------------------------------------
# Negotiation engine
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def get_primary_provider() -> tuple[str, str]:
    """Return ``(provider, model)`` for the primary LLM."""
    provider = os.getenv("NEGOTIATION_PRIMARY_PROVIDER", "claude").strip().lower()
    model = os.getenv("NEGOTIATION_PRIMARY_MODEL", "claude-3-5-haiku-latest").strip()
    return provider, model


@lru_cache(maxsize=None)
def get_fallback_providers() -> tuple[tuple[str, str], ...]:
    """Return fallback ``(provider, model)`` pairs in order.

    Read from ``NEGOTIATION_FALLBACK_PROVIDERS`` as a comma-separated list of
    ``provider:model`` entries.  An empty value disables fallback.
    """
    raw = os.getenv("NEGOTIATION_FALLBACK_PROVIDERS", "openai:gpt-4o-mini")
    pairs: list[tuple[str, str]] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        provider, sep, model = entry.partition(":")
        if not sep or not provider.strip() or not model.strip():
            raise RuntimeError(
                f"NEGOTIATION_FALLBACK_PROVIDERS entries must look like provider:model, got {entry!r}"
            )
        pairs.append((provider.strip().lower(), model.strip()))
    return tuple(pairs)


@lru_cache(maxsize=None)
def get_max_retries() -> int:
    """Attempts made against each provider before failing over."""
    return _int_env("NEGOTIATION_MAX_RETRIES", 2)


@lru_cache(maxsize=None)
def get_retry_delay_ms() -> int:
    return _int_env("NEGOTIATION_RETRY_DELAY_MS", 1000)


@lru_cache(maxsize=None)
def get_call_timeout_s() -> float | None:
    return _float_env("NEGOTIATION_CALL_TIMEOUT_S", 60.0)


@lru_cache(maxsize=None)
def get_max_iterations() -> int:
    """Maximum synthesis calls per turn."""
    return _int_env("NEGOTIATION_MAX_ITERATIONS", 10)


@lru_cache(maxsize=None)
def get_turn_timeout_s() -> float | None:
    """Whole-turn deadline; ``None`` when unset."""
    return _float_env("NEGOTIATION_TURN_TIMEOUT_S", None)


@lru_cache(maxsize=None)
def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
