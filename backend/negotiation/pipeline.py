"""Caller boundary: one ``process`` call per supplier message.

``NegotiationAgent.process`` runs the orchestrator graph, drafts the
outbound text for the final action and aggregates usage.  Failures of
external calls never escape; they end the turn in ``escalate``.  Only
configuration errors propagate.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from negotiation.constants import DEFAULT_MAX_ITERATIONS
from negotiation.experts.response_crafter import ResponseCrafter
from negotiation.llm.providers import build_provider
from negotiation.llm.service import ProviderFailoverService
from negotiation.llm.types import LLMCaller
from negotiation.orchestrator import Orchestrator
from negotiation.schemas import (
    AgentAction,
    DecisionOutput,
    ProcessRequest,
    ProcessResponse,
)
from negotiation.usage import TurnUsage

logger = logging.getLogger(__name__)


class NegotiationAgent:
    """Multi-agent decision engine for supplier negotiations.

    Parameters
    ----------
    llm : LLMCaller
        Provider-failover service used for every model call.
    max_iterations : int
        Synthesis bound handed to the orchestrator.
    turn_timeout_s : float, optional
        Deadline for a whole turn.  A timed-out turn escalates.
    """

    def __init__(
        self,
        llm: LLMCaller,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        turn_timeout_s: Optional[float] = None,
    ) -> None:
        self.orchestrator = Orchestrator(llm, max_iterations=max_iterations)
        self.response_crafter = ResponseCrafter(llm)
        self.turn_timeout_s = turn_timeout_s

    async def process(self, request: ProcessRequest) -> ProcessResponse:
        if self.turn_timeout_s is None:
            return await self._process(request)
        try:
            return await asyncio.wait_for(self._process(request), timeout=self.turn_timeout_s)
        except asyncio.TimeoutError:
            reasoning = f"Turn timed out after {self.turn_timeout_s}s"
            logger.warning("%s; escalating", reasoning)
            return ProcessResponse(
                action=AgentAction.ESCALATE,
                reasoning=reasoning,
                extracted_data=request.prior_extracted_data,
                policy_evaluation=DecisionOutput(
                    action=AgentAction.ESCALATE, reasoning=reasoning, override="turn_timeout"
                ),
                escalation_reason=reasoning,
            )

    async def _process(self, request: ProcessRequest) -> ProcessResponse:
        oi = request.order_information
        result = await self.orchestrator.run(
            supplier_message=request.supplier_message,
            order_information=oi,
            conversation_history=request.conversation_history,
            prior_extracted_data=request.prior_extracted_data,
            turn_number=request.turn_number,
        )

        policy = result.policy_evaluation
        counter_terms = result.decision.counter_terms if policy.action == result.decision.action else None
        generated, crafting_usage = await self.response_crafter.craft(
            action=policy.action,
            reasoning=policy.reasoning,
            order_information=oi,
            extracted_data=result.extracted_data,
            counter_terms=counter_terms,
            needs_analysis=result.needs_analysis,
            conversation_history=request.conversation_history,
        )

        action = policy.action
        reasoning = policy.reasoning
        if action in (AgentAction.COUNTER, AgentAction.CLARIFY) and generated.escalation_reason:
            logger.warning("Drafting for %s failed, escalating: %s", action.value, generated.escalation_reason)
            policy = DecisionOutput(
                action=AgentAction.ESCALATE,
                reasoning=generated.escalation_reason,
                proposed_action=action,
                override="drafting_failed",
            )
            action = AgentAction.ESCALATE
            reasoning = generated.escalation_reason

        usage = TurnUsage()
        for record in result.usage:
            usage.add_usage(record)
        usage.add_usage(crafting_usage)
        totals = usage.to_totals()

        logger.info(
            "Turn finished: action=%s calls=%d tokens=%d/%d latency=%dms",
            action.value, totals.calls, totals.input_tokens, totals.output_tokens, totals.latency_ms,
        )

        return ProcessResponse(
            action=action,
            reasoning=reasoning,
            extracted_data=result.extracted_data,
            policy_evaluation=policy,
            counter_offer=generated.counter_offer,
            proposed_approval=generated.proposed_approval,
            clarification_email=generated.clarification_email,
            escalation_reason=generated.escalation_reason,
            expert_opinions=result.expert_opinions,
            orchestrator_trace=result.trace,
            totals=totals,
        )


def build_agent_from_config() -> NegotiationAgent:
    """Assemble the agent from environment configuration.

    Raises ``ConfigurationError`` when a configured provider is unknown or
    its API key is missing.
    """
    from config import (
        get_call_timeout_s,
        get_fallback_providers,
        get_max_iterations,
        get_max_retries,
        get_primary_provider,
        get_retry_delay_ms,
        get_turn_timeout_s,
    )

    primary = get_primary_provider()
    providers = [build_provider(*primary)]
    providers.extend(build_provider(provider, model) for provider, model in get_fallback_providers())
    logger.info(
        "Negotiation providers: %s",
        [f"{p.name}/{p.model}" for p in providers],
    )

    service = ProviderFailoverService(
        providers,
        max_retries_per_provider=get_max_retries(),
        retry_delay_ms=get_retry_delay_ms(),
        call_timeout_s=get_call_timeout_s(),
    )
    return NegotiationAgent(
        service,
        max_iterations=get_max_iterations(),
        turn_timeout_s=get_turn_timeout_s(),
    )
