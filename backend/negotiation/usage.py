"""Per-turn token usage and cost accounting."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from negotiation.constants import MODEL_PRICING
from negotiation.llm.types import LLMResponse
from negotiation.schemas import ExpertOpinion, TurnTotals


@dataclass
class TokenUsage:
    """Token usage for a single successful model call."""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    model: str = ""
    provider: str = ""
    node_name: str = ""

    def to_dict(self) -> dict:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "latency_ms": self.latency_ms,
            "model": self.model,
            "provider": self.provider,
            "node_name": self.node_name,
        }


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> Optional[float]:
    """USD cost of one call, or ``None`` when the model is not in the price table."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return None
    input_rate, output_rate = pricing
    return (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate


def usage_from_response(response: LLMResponse, node_name: str) -> TokenUsage:
    return TokenUsage(
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
        latency_ms=response.latency_ms,
        model=response.model,
        provider=response.provider,
        node_name=node_name,
    )


def usage_from_opinion(opinion: ExpertOpinion) -> Optional[TokenUsage]:
    """Usage for the call behind *opinion*; ``None`` for a fallback opinion with no completed call."""
    if opinion.provider == "unknown":
        return None
    return TokenUsage(
        input_tokens=opinion.input_tokens,
        output_tokens=opinion.output_tokens,
        latency_ms=opinion.latency_ms,
        model=opinion.model,
        provider=opinion.provider,
        node_name=opinion.expert_name,
    )


@dataclass
class TurnUsage:
    """Accumulated usage for one negotiation turn."""
    call_details: List[TokenUsage] = field(default_factory=list)

    @property
    def total_input_tokens(self) -> int:
        return sum(u.input_tokens for u in self.call_details)

    @property
    def total_output_tokens(self) -> int:
        return sum(u.output_tokens for u in self.call_details)

    def add_usage(self, usage: Optional[TokenUsage]) -> None:
        if usage is not None:
            self.call_details.append(usage)

    def estimated_cost(self) -> Optional[float]:
        """Sum of the priced calls; ``None`` when no call could be priced."""
        costs = [
            cost
            for cost in (estimate_cost(u.model, u.input_tokens, u.output_tokens) for u in self.call_details)
            if cost is not None
        ]
        if not costs:
            return None
        return round(sum(costs), 6)

    def to_totals(self) -> TurnTotals:
        return TurnTotals(
            calls=len(self.call_details),
            latency_ms=sum(u.latency_ms for u in self.call_details),
            input_tokens=self.total_input_tokens,
            output_tokens=self.total_output_tokens,
            estimated_cost_usd=self.estimated_cost(),
        )
