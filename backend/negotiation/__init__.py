"""Multi-agent decision engine for B2B supplier negotiations.

Given an inbound supplier message and the merchant's order rules, the engine
fans out to narrowly scoped expert evaluators, synthesizes their opinions in
a bounded LangGraph loop, applies deterministic guardrails and drafts the
outbound response for exactly one action: accept, counter, escalate or
clarify.
"""

from __future__ import annotations

from .conversation import ConversationContext
from .errors import ConfigurationError, ProviderExhaustedError
from .pipeline import NegotiationAgent, build_agent_from_config
from .schemas import (
    AgentAction,
    DecisionOutput,
    ExtractedQuoteData,
    OrderInformation,
    ProcessRequest,
    ProcessResponse,
)

__all__ = [
    "AgentAction",
    "ConfigurationError",
    "ConversationContext",
    "DecisionOutput",
    "ExtractedQuoteData",
    "NegotiationAgent",
    "OrderInformation",
    "ProcessRequest",
    "ProcessResponse",
    "ProviderExhaustedError",
    "build_agent_from_config",
]
