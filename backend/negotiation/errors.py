"""Exceptions raised inside the negotiation engine.

Only ``ConfigurationError`` is meant to reach the caller. Provider
exhaustion is raised by the failover service and recovered by every consumer
into a safe fallback or a forced escalation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from negotiation.llm.types import AttemptLog


class NegotiationError(Exception):
    """Base class for engine errors."""


class ProviderExhaustedError(NegotiationError):
    """Every attempt on every configured provider failed."""

    def __init__(self, attempts: list["AttemptLog"]):
        self.attempts = attempts
        last_error = attempts[-1].error if attempts and attempts[-1].error else "Unknown error"
        super().__init__(f"All LLM providers failed. Last error: {last_error}")


class ExpertOutputError(NegotiationError):
    """An expert's model output could not be parsed or validated."""


class ConfigurationError(RuntimeError):
    """A required configuration value is missing or invalid."""
