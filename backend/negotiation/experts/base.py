"""Shared plumbing for expert evaluators.

Every expert is a narrowly scoped model call.  ``Expert.analyze`` is the
single safe-fallback combinator: whatever goes wrong inside the concrete
``_analyze`` (provider exhaustion, unparseable output, validation failure)
becomes a well-formed opinion built from the expert's ``_fallback``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel

from negotiation.errors import ConfigurationError
from negotiation.llm.types import LLMCaller, LLMServiceResult
from negotiation.schemas import Analysis, ExpertOpinion

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)


class Expert(ABC, Generic[InputT]):
    """Base class for the extraction, escalation and needs experts."""

    name: str = "expert"

    def __init__(self, llm: LLMCaller) -> None:
        self._llm = llm

    async def analyze(self, expert_input: InputT) -> ExpertOpinion:
        """Run the expert; never raises except for configuration errors."""
        try:
            return await self._analyze(expert_input)
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s expert failed, using safe fallback: %s", self.name, exc, exc_info=True)
            return ExpertOpinion(expert_name=self.name, analysis=self._fallback(str(exc)))

    @abstractmethod
    async def _analyze(self, expert_input: InputT) -> ExpertOpinion:
        """Make the model call and build the opinion."""

    @abstractmethod
    def _fallback(self, error: str) -> Analysis:
        """Analysis to report when ``_analyze`` fails."""

    def _opinion(self, analysis: Analysis, result: LLMServiceResult) -> ExpertOpinion:
        response = result.response
        return ExpertOpinion(
            expert_name=self.name,
            analysis=analysis,
            provider=response.provider,
            model=response.model,
            latency_ms=response.latency_ms,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )


def build_user_message(*sections: tuple[str, str | None]) -> str:
    """Join ``(title, body)`` pairs into markdown sections, skipping empty bodies."""
    return "\n\n".join(f"## {title}\n{body}" for title, body in sections if body)
