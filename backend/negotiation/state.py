"""LangGraph state definition for one negotiation turn.

NegotiationState is a TypedDict consumed by every orchestrator node.  The
list fields use ``operator.add`` reducers so nodes append opinions, trace
entries and usage records instead of replacing them; the two parallel
expert nodes write distinct keys so they never collide.
"""

from __future__ import annotations

import operator
from typing import Annotated, Optional, TypedDict

from negotiation.schemas import (
    DecisionOutput,
    ExpertOpinion,
    ExtractedQuoteData,
    NeedsAnalysis,
    OrchestratorDecision,
    OrderInformation,
    TraceIteration,
)
from negotiation.usage import TokenUsage


class NegotiationState(TypedDict, total=False):
    """Shared state passed through every node of the orchestrator graph.

    ``total=False`` makes all fields optional so nodes only need to
    write the keys they care about.
    """

    # Turn input
    supplier_message: str
    order_information: OrderInformation
    conversation_history: Optional[str]
    prior_extracted_data: Optional[ExtractedQuoteData]
    turn_number: Optional[int]

    # Rendered once per turn from order_information
    escalation_triggers: str
    negotiation_rules: str

    # Initial fan-out (one key per parallel node)
    extraction_opinion: ExpertOpinion
    escalation_opinion: ExpertOpinion

    # Accumulated across the loop (reducers)
    opinions: Annotated[list[ExpertOpinion], operator.add]
    decisions: Annotated[list[OrchestratorDecision], operator.add]
    trace: Annotated[list[TraceIteration], operator.add]
    usage: Annotated[list[TokenUsage], operator.add]

    # Best-known facts
    extracted_data: Optional[ExtractedQuoteData]
    needs_analysis: Optional[NeedsAnalysis]

    # Iteration control
    iteration: int
    max_iterations: int
    current_decision: OrchestratorDecision

    # Outcome
    pre_check: Optional[DecisionOutput]
    final_decision: OrchestratorDecision
    policy_evaluation: DecisionOutput
