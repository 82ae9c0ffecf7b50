"""Orchestrator: the per-turn LangGraph state machine.

Graph shape::

    START -> extraction ─┐
    START -> escalation ─┴-> pre_checks -> synthesize | finalize
    synthesize -> finalize | reconsult | iteration_limit
    reconsult -> synthesize
    iteration_limit -> finalize -> END

The extraction and escalation experts run in the same super-step and never
see each other's output.  Synthesis is bounded by ``max_iterations``; the
LangGraph recursion limit is derived from it so the explicit bound, not the
framework default, governs termination.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel

from negotiation.constants import DEFAULT_MAX_ITERATIONS, EXPERT_NAMES
from negotiation.decision_engine import apply_guardrails, check_pre_synthesis_escalation
from negotiation.experts import EscalationExpert, ExtractionExpert, NeedsExpert
from negotiation.experts.base import Expert
from negotiation.formatting import (
    format_escalation_triggers,
    format_negotiation_rules,
    format_order_information,
)
from negotiation.llm.types import LLMCaller, LLMRequest, OutputSchema
from negotiation.output_parser import ParseSuccess, parse_model_output
from negotiation.schemas import (
    AgentAction,
    DecisionOutput,
    EscalationExpertInput,
    ExpertOpinion,
    ExtractedQuoteData,
    ExtractionAnalysis,
    ExtractionExpertInput,
    NeedsAnalysis,
    NeedsExpertInput,
    OrchestratorDecision,
    OrchestratorTrace,
    OrderInformation,
    TraceIteration,
)
from negotiation.state import NegotiationState
from negotiation.usage import TokenUsage, usage_from_opinion, usage_from_response

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYNTHESIS_SYSTEM_PROMPT = """\
You are the decision-making orchestrator for a purchase-order negotiation
system.  You act for a MERCHANT who is BUYING goods from a supplier.

You receive opinions from specialist experts and must decide the next
action.  You see everything: all expert opinions, the merchant's rules,
the escalation triggers and the order context.

You represent the buyer:
- Lower prices are ALWAYS better.  A price below target is a win.
- NEVER counter to raise a price or to worsen any term.
- Only counter to IMPROVE terms for the merchant.
- "Target" means "happy at this price or lower"; it is not a minimum.

Actions:
- accept: EVERY merchant rule is satisfied, no trigger fired, and price
  data is available.
- counter: one or more rules are violated but the quote is negotiable.
- escalate: an escalation trigger fired, or the situation is too risky
  for automated handling.
- clarify: data gaps prevent evaluating the quote.

Rules:
1. Escalation triggers take priority.  If a trigger fired, escalate.
2. If extraction failed, escalate.
3. Rules are hard requirements.  "must", "maximum", "under" are absolute;
   only "prefer", "ideally", "if possible" signal flexibility.
4. One violated rule means you do not accept.
5. The last known price is context only, never a rule.
6. "Never accept the first offer" applies to the supplier's FIRST offer,
   not to revised prices in later turns.

Re-consultation:
If you need more information, set ready_to_act=false and name next_expert
("extraction", "escalation" or "needs") with a specific
question_for_expert.  Use this sparingly, e.g. ask "needs" which questions
to put to the supplier before you clarify.

Counter terms:
When countering, provide counter_terms with a LOWER target_price (never
above the supplier's offer), an optional target_quantity and optional
other_terms.  Never reveal the merchant's acceptable range.

Output ONLY valid JSON.
"""

ORCHESTRATOR_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "ready_to_act": {"type": "boolean", "description": "True if there is enough information to decide"},
        "action": {
            "type": ["string", "null"],
            "enum": ["accept", "counter", "escalate", "clarify", None],
            "description": "The decided action, or null when not ready",
        },
        "reasoning": {"type": "string", "description": "Explanation of the decision"},
        "next_expert": {
            "type": ["string", "null"],
            "description": "Expert to re-consult when not ready: " + ", ".join(EXPERT_NAMES),
        },
        "question_for_expert": {"type": ["string", "null"], "description": "Follow-up question for that expert"},
        "counter_terms": {
            "type": ["object", "null"],
            "properties": {
                "target_price": {"type": "number"},
                "target_quantity": {"type": "number"},
                "other_terms": {"type": ["string", "null"]},
            },
            "description": "Counter-offer terms when action is counter",
        },
    },
    "required": ["ready_to_act", "reasoning"],
}

ORCHESTRATOR_OUTPUT_SCHEMA = OutputSchema(
    name="orchestrate_decision",
    description="Synthesize expert opinions and decide the next action",
    schema=ORCHESTRATOR_JSON_SCHEMA,
)

ITERATION_LIMIT_REASONING = "Orchestrator reached maximum iteration limit, escalating for safety"


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class OrchestratorResult:
    """Everything one orchestrator run produced."""

    decision: OrchestratorDecision
    policy_evaluation: DecisionOutput
    trace: OrchestratorTrace
    expert_opinions: list[ExpertOpinion]
    extracted_data: Optional[ExtractedQuoteData]
    needs_analysis: Optional[NeedsAnalysis] = None
    usage: list[TokenUsage] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Prompt builder
# ---------------------------------------------------------------------------


def build_synthesis_request(state: NegotiationState) -> LLMRequest:
    oi: OrderInformation = state["order_information"]
    sections: list[str] = []

    if state.get("conversation_history"):
        sections.append(f"## Conversation History\n{state['conversation_history']}")

    sections.append(f"## Supplier's Latest Message\n---\n{state['supplier_message']}\n---")
    sections.append(format_order_information(oi))
    sections.append(f"## Merchant's Negotiation Rules\n{state['negotiation_rules']}")

    turn_number = state.get("turn_number")
    if turn_number is not None:
        turn = f"## Turn Number: {turn_number}"
        if oi.negotiation and oi.negotiation.never_accept_first_offer and turn_number <= 1:
            turn += f"\nNOTE: The merchant requires never accepting the first offer. This is turn {turn_number}."
        sections.append(turn)

    opinion_blocks = ["## Expert Opinions"]
    for opinion in state.get("opinions", []):
        analysis_json = json.dumps(opinion.analysis.model_dump(mode="json"), indent=2)
        opinion_blocks.append(f"### {opinion.expert_name} Expert\n```json\n{analysis_json}\n```")
    sections.append("\n\n".join(opinion_blocks))

    decisions = state.get("decisions", [])
    if decisions:
        lines = ["## Prior Orchestrator Decisions (this loop)"]
        for i, prior in enumerate(decisions, start=1):
            line = f"Iteration {i}: {prior.reasoning}"
            if prior.next_expert:
                line += f' -> Re-consulted {prior.next_expert}: "{prior.question_for_expert or ""}"'
            lines.append(line)
        sections.append("\n".join(lines))

    return LLMRequest(
        system_prompt=SYNTHESIS_SYSTEM_PROMPT,
        user_message="\n\n".join(sections),
        max_tokens=1024,
        temperature=0.0,
        output_schema=ORCHESTRATOR_OUTPUT_SCHEMA,
    )


def _forced_escalation(reasoning: str) -> OrchestratorDecision:
    return OrchestratorDecision(ready_to_act=True, action=AgentAction.ESCALATE, reasoning=reasoning)


# ---------------------------------------------------------------------------
# Scoped expert inputs
# ---------------------------------------------------------------------------


def _extraction_input(
    state: NegotiationState, extracted: Optional[ExtractedQuoteData], question: Optional[str]
) -> ExtractionExpertInput:
    return ExtractionExpertInput(
        supplier_message=state["supplier_message"],
        conversation_history=state.get("conversation_history"),
        prior_extracted_data=extracted,
        additional_question=question,
    )


def _escalation_input(
    state: NegotiationState, extracted: Optional[ExtractedQuoteData], question: Optional[str]
) -> EscalationExpertInput:
    oi: OrderInformation = state["order_information"]
    return EscalationExpertInput(
        supplier_message=state["supplier_message"],
        escalation_triggers=state["escalation_triggers"],
        product_name=oi.product.product_name,
        supplier_product_code=oi.product.supplier_product_code,
        conversation_history=state.get("conversation_history"),
        extracted_data=extracted,
        additional_question=question,
    )


def _needs_input(
    state: NegotiationState, extracted: Optional[ExtractedQuoteData], question: Optional[str]
) -> NeedsExpertInput:
    oi: OrderInformation = state["order_information"]
    return NeedsExpertInput(
        extracted_data=extracted,
        negotiation_rules=state["negotiation_rules"],
        product_name=oi.product.product_name,
        supplier_product_code=oi.product.supplier_product_code,
        quantity_requested=oi.quantity.target_quantity,
        conversation_history=state.get("conversation_history"),
        additional_question=question,
    )


_EXPERT_INPUTS: dict[str, Callable[..., BaseModel]] = {
    "extraction": _extraction_input,
    "escalation": _escalation_input,
    "needs": _needs_input,
}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Fans out to experts, synthesizes, re-consults and finalizes one turn.

    Parameters
    ----------
    llm : LLMCaller
        Failover service shared by the experts and the synthesis step.
    max_iterations : int
        Maximum number of synthesis calls per turn.
    """

    def __init__(self, llm: LLMCaller, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self._llm = llm
        self.max_iterations = max_iterations
        self.experts: dict[str, Expert] = {
            expert.name: expert for expert in (ExtractionExpert(llm), EscalationExpert(llm), NeedsExpert(llm))
        }
        self.graph = self._build_graph()

    # -- Graph ----------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(NegotiationState)

        builder.add_node("extraction", self._extraction_node)
        builder.add_node("escalation", self._escalation_node)
        builder.add_node("pre_checks", self._pre_checks_node)
        builder.add_node("synthesize", self._synthesize_node)
        builder.add_node("reconsult", self._reconsult_node)
        builder.add_node("iteration_limit", self._iteration_limit_node)
        builder.add_node("finalize", self._finalize_node)

        # Parallel fan-out; pre_checks waits for both experts
        builder.add_edge(START, "extraction")
        builder.add_edge(START, "escalation")
        builder.add_edge(["extraction", "escalation"], "pre_checks")

        builder.add_conditional_edges(
            "pre_checks",
            self._route_after_pre_checks,
            {"synthesize": "synthesize", "finalize": "finalize"},
        )
        builder.add_conditional_edges(
            "synthesize",
            self._route_after_synthesis,
            {"finalize": "finalize", "reconsult": "reconsult", "iteration_limit": "iteration_limit"},
        )
        builder.add_edge("reconsult", "synthesize")
        builder.add_edge("iteration_limit", "finalize")
        builder.add_edge("finalize", END)

        return builder.compile()

    @property
    def recursion_limit(self) -> int:
        # synthesize + reconsult per iteration, plus the fixed entry/exit steps
        return 3 * self.max_iterations + 10

    async def run(
        self,
        supplier_message: str,
        order_information: OrderInformation,
        conversation_history: Optional[str] = None,
        prior_extracted_data: Optional[ExtractedQuoteData] = None,
        turn_number: Optional[int] = None,
    ) -> OrchestratorResult:
        initial: NegotiationState = {
            "supplier_message": supplier_message,
            "order_information": order_information,
            "conversation_history": conversation_history,
            "prior_extracted_data": prior_extracted_data,
            "turn_number": turn_number,
            "escalation_triggers": format_escalation_triggers(order_information),
            "negotiation_rules": format_negotiation_rules(order_information),
            "opinions": [],
            "decisions": [],
            "trace": [],
            "usage": [],
            "extracted_data": prior_extracted_data,
            "needs_analysis": None,
            "iteration": 0,
            "max_iterations": self.max_iterations,
            "pre_check": None,
        }
        final: dict[str, Any] = await self.graph.ainvoke(
            initial, config={"recursion_limit": self.recursion_limit}
        )

        decision: OrchestratorDecision = final["final_decision"]
        return OrchestratorResult(
            decision=decision,
            policy_evaluation=final["policy_evaluation"],
            trace=OrchestratorTrace(
                iterations=final.get("trace", []),
                final_decision=decision,
                total_iterations=final.get("iteration", 0),
            ),
            expert_opinions=final.get("opinions", []),
            extracted_data=final.get("extracted_data"),
            needs_analysis=final.get("needs_analysis"),
            usage=final.get("usage", []),
        )

    # -- Routing --------------------------------------------------------------

    @staticmethod
    def _route_after_pre_checks(state: NegotiationState) -> str:
        return "finalize" if state.get("pre_check") is not None else "synthesize"

    @staticmethod
    def _route_after_synthesis(state: NegotiationState) -> str:
        decision = state["current_decision"]
        if decision.ready_to_act and decision.action is not None:
            return "finalize"
        if decision.next_expert:
            if state["iteration"] < state["max_iterations"]:
                return "reconsult"
            return "iteration_limit"
        return "finalize"

    # -- Expert nodes ---------------------------------------------------------

    async def _extraction_node(self, state: NegotiationState) -> dict[str, Any]:
        opinion = await self.experts["extraction"].analyze(
            _extraction_input(state, state.get("prior_extracted_data"), None)
        )
        return {"extraction_opinion": opinion, "usage": _usage_list(opinion)}

    async def _escalation_node(self, state: NegotiationState) -> dict[str, Any]:
        # Runs alongside extraction, so there is no extracted data to pass yet
        opinion = await self.experts["escalation"].analyze(_escalation_input(state, None, None))
        return {"escalation_opinion": opinion, "usage": _usage_list(opinion)}

    async def _pre_checks_node(self, state: NegotiationState) -> dict[str, Any]:
        extraction_opinion = state["extraction_opinion"]
        analysis: ExtractionAnalysis = extraction_opinion.analysis
        extracted = state.get("extracted_data")
        if analysis.success and analysis.extracted_data is not None:
            extracted = extracted.merge(analysis.extracted_data) if extracted else analysis.extracted_data

        pre_check = check_pre_synthesis_escalation(analysis)
        if pre_check is not None:
            logger.info("Pre-synthesis escalation: %s", pre_check.reasoning)

        return {
            "opinions": [extraction_opinion, state["escalation_opinion"]],
            "extracted_data": extracted,
            "pre_check": pre_check,
        }

    async def _reconsult_node(self, state: NegotiationState) -> dict[str, Any]:
        decision = state["current_decision"]
        expert_name = decision.next_expert or ""
        question = decision.question_for_expert or ""
        extracted = state.get("extracted_data")
        update: dict[str, Any] = {}

        logger.info("Re-consulting %s expert (iteration %d): %s", expert_name, state["iteration"], question)

        expert = self.experts.get(expert_name)
        if expert is None:
            logger.warning("Orchestrator requested unknown expert %r", expert_name)
            opinion = ExpertOpinion(
                expert_name=expert_name,
                analysis=NeedsAnalysis(reasoning=f'Unknown expert "{expert_name}" requested'),
            )
        else:
            opinion = await expert.analyze(_EXPERT_INPUTS[expert_name](state, extracted, question))
            analysis = opinion.analysis
            if isinstance(analysis, ExtractionAnalysis) and analysis.success and analysis.extracted_data:
                update["extracted_data"] = (
                    extracted.merge(analysis.extracted_data) if extracted else analysis.extracted_data
                )
            elif isinstance(analysis, NeedsAnalysis):
                update["needs_analysis"] = analysis

        update.update(
            {
                "opinions": [opinion],
                "trace": [
                    TraceIteration(decision=decision, reconsulted_expert=expert_name, follow_up_opinion=opinion)
                ],
                "usage": _usage_list(opinion),
            }
        )
        return update

    # -- Synthesis ------------------------------------------------------------

    async def _synthesize_node(self, state: NegotiationState) -> dict[str, Any]:
        iteration = state.get("iteration", 0) + 1
        usage: list[TokenUsage] = []
        try:
            result = await self._llm.call(build_synthesis_request(state))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Synthesis call failed on iteration %d: %s", iteration, exc)
            decision = _forced_escalation(f"Orchestrator LLM failure: {exc}")
        else:
            usage.append(usage_from_response(result.response, "synthesis"))
            parsed = parse_model_output(result.response.content, OrchestratorDecision)
            if isinstance(parsed, ParseSuccess):
                decision = parsed.data
            else:
                logger.warning("Synthesis output unparseable on iteration %d: %s", iteration, parsed.describe())
                decision = _forced_escalation(f"Orchestrator LLM failure: unparseable output ({parsed.describe()})")

        logger.info(
            "Synthesis iteration %d: ready=%s action=%s next_expert=%s",
            iteration, decision.ready_to_act,
            decision.action.value if decision.action else None, decision.next_expert,
        )
        return {"iteration": iteration, "current_decision": decision, "decisions": [decision], "usage": usage}

    async def _iteration_limit_node(self, state: NegotiationState) -> dict[str, Any]:
        logger.warning("Orchestrator hit the iteration limit (%d)", state["max_iterations"])
        return {
            "trace": [TraceIteration(decision=state["current_decision"])],
            "final_decision": _forced_escalation(ITERATION_LIMIT_REASONING),
        }

    # -- Finalize -------------------------------------------------------------

    async def _finalize_node(self, state: NegotiationState) -> dict[str, Any]:
        pre_check: Optional[DecisionOutput] = state.get("pre_check")
        if pre_check is not None:
            return {
                "final_decision": _forced_escalation(pre_check.reasoning),
                "policy_evaluation": pre_check,
            }

        update: dict[str, Any] = {}
        final = state.get("final_decision")
        if final is None:
            current = state["current_decision"]
            update["trace"] = [TraceIteration(decision=current)]
            if current.action is None:
                final = current.model_copy(
                    update={
                        "ready_to_act": True,
                        "action": AgentAction.ESCALATE,
                        "reasoning": f"Orchestrator failed to choose an action: {current.reasoning}",
                    }
                )
            else:
                final = current.model_copy(update={"ready_to_act": True})
            update["final_decision"] = final

        policy = apply_guardrails(
            final.action,
            final.reasoning,
            state.get("extracted_data"),
            state["escalation_triggers"],
            state["negotiation_rules"],
        )
        if policy.override:
            logger.info("Guardrail override %s: %s -> %s", policy.override, final.action.value, policy.action.value)
        update["policy_evaluation"] = policy
        return update


def _usage_list(opinion: ExpertOpinion) -> list[TokenUsage]:
    usage = usage_from_opinion(opinion)
    return [usage] if usage is not None else []
