"""Pydantic schemas for the negotiation engine.

These models define the data exchanged between the pieces of one turn:
- the caller supplies ``OrderInformation`` inside a ``ProcessRequest``
- the output parser produces ``ExtractedQuoteData``
- each expert produces an ``ExpertOpinion`` wrapping a typed analysis
- the synthesis step produces ``OrchestratorDecision`` items, recorded in an
  ``OrchestratorTrace``
- the decision engine produces the final ``DecisionOutput``
- the pipeline returns a ``ProcessResponse``
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentAction(str, Enum):
    ACCEPT = "accept"
    COUNTER = "counter"
    ESCALATE = "escalate"
    CLARIFY = "clarify"


# ---------------------------------------------------------------------------
# Order information (caller-supplied, opaque to most of the core)
# ---------------------------------------------------------------------------


class MerchantInfo(BaseModel):
    merchant_id: str = ""
    merchant_name: str
    contact_name: str = ""
    contact_email: str = ""


class SupplierInfo(BaseModel):
    supplier_name: str
    relationship_tier: str = "standard"


class ProductInfo(BaseModel):
    merchant_sku: str
    supplier_product_code: str
    product_name: str
    unit_of_measure: Optional[str] = None
    product_description: Optional[str] = None
    required_certifications: list[str] = Field(default_factory=list)
    packaging_requirements: Optional[str] = None


class PricingRules(BaseModel):
    currency: str = "USD"
    target_price: float
    maximum_acceptable_price: float
    last_known_price: Optional[float] = None
    never_counter_above: Optional[float] = None
    escalate_above_price: Optional[float] = None


class QuantityRules(BaseModel):
    target_quantity: int
    minimum_acceptable_quantity: Optional[int] = None
    maximum_acceptable_quantity: Optional[int] = None


class LeadTimeRules(BaseModel):
    maximum_lead_time_days: Optional[int] = None
    preferred_lead_time_days: Optional[int] = None


class PaymentTermsRules(BaseModel):
    required_terms: Optional[str] = None
    acceptable_alternatives: list[str] = Field(default_factory=list)
    maximum_upfront_percent: Optional[float] = None


class ShippingRules(BaseModel):
    required_incoterms: Optional[str] = None
    origin_location: Optional[str] = None
    destination_location: Optional[str] = None
    preferred_method: Optional[str] = None


class NegotiationBehavior(BaseModel):
    never_accept_first_offer: bool = False
    max_negotiation_rounds: Optional[int] = None
    counter_price_strategy: Optional[str] = None
    priority_order: list[str] = Field(default_factory=list)
    additional_rules: list[str] = Field(default_factory=list)


class EscalationSettings(BaseModel):
    additional_triggers: list[str] = Field(default_factory=list)


class OrderMetadata(BaseModel):
    po_number: Optional[str] = None
    order_type: Optional[str] = None
    urgency: Optional[str] = None
    order_notes: Optional[str] = None


class OrderInformation(BaseModel):
    """Structured order specification authored by the merchant."""

    merchant: MerchantInfo
    supplier: SupplierInfo
    product: ProductInfo
    pricing: PricingRules
    quantity: QuantityRules
    lead_time: Optional[LeadTimeRules] = None
    payment_terms: Optional[PaymentTermsRules] = None
    shipping: Optional[ShippingRules] = None
    negotiation: Optional[NegotiationBehavior] = None
    escalation: Optional[EscalationSettings] = None
    metadata: Optional[OrderMetadata] = None


# ---------------------------------------------------------------------------
# Extracted quote data
# ---------------------------------------------------------------------------


class ExtractedQuoteData(BaseModel):
    """Facts extracted from a supplier message.

    Numeric fields are either finite numbers or ``None``; zero never means
    "unknown".
    """

    model_config = ConfigDict(frozen=True)

    quoted_price: Optional[float] = None
    quoted_price_currency: str = "USD"
    quoted_price_usd: Optional[float] = None
    available_quantity: Optional[int] = None
    moq: Optional[int] = None
    lead_time_min_days: Optional[int] = None
    lead_time_max_days: Optional[int] = None
    payment_terms: Optional[str] = None
    validity_period: Optional[str] = None
    raw_extraction_json: dict[str, Any] = Field(default_factory=dict)

    def merge(self, newer: "ExtractedQuoteData | None") -> "ExtractedQuoteData":
        """Return a copy where every present field of *newer* wins.

        Absent (``None``) values in *newer* never overwrite present ones.
        The currency and USD value travel with the price they describe, so a
        new price with no conversion clears the old USD figure.
        """
        if newer is None:
            return self
        updates: dict[str, Any] = {}
        for name in _MERGEABLE_FIELDS:
            value = getattr(newer, name)
            if value is not None:
                updates[name] = value
        if newer.quoted_price is not None:
            updates["quoted_price_currency"] = newer.quoted_price_currency
            updates["quoted_price_usd"] = newer.quoted_price_usd
        if newer.raw_extraction_json:
            updates["raw_extraction_json"] = newer.raw_extraction_json
        return self.model_copy(update=updates)


_MERGEABLE_FIELDS = (
    "quoted_price",
    "quoted_price_usd",
    "available_quantity",
    "moq",
    "lead_time_min_days",
    "lead_time_max_days",
    "payment_terms",
    "validity_period",
)


class LLMExtractionOutput(BaseModel):
    """Shape the extraction prompt asks the model to return."""

    quoted_price: Optional[float] = None
    quoted_price_currency: Optional[str] = "USD"
    available_quantity: Optional[int] = None
    moq: Optional[int] = None
    lead_time_min_days: Optional[int] = None
    lead_time_max_days: Optional[int] = None
    payment_terms: Optional[str] = None
    validity_period: Optional[str] = None
    confidence: float = 0.5
    notes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Expert analyses and opinions
# ---------------------------------------------------------------------------


class ExtractionAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["extraction"] = "extraction"
    extracted_data: Optional[ExtractedQuoteData] = None
    confidence: float = 0.0
    notes: list[str] = Field(default_factory=list)
    success: bool
    error: Optional[str] = None


class EscalationAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["escalation"] = "escalation"
    should_escalate: bool
    reasoning: str
    triggers_evaluated: list[str] = Field(default_factory=list)
    triggered_triggers: list[str] = Field(default_factory=list)
    severity: Literal["low", "medium", "high", "critical"] = "low"


class NeedsAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["needs"] = "needs"
    missing_fields: list[str] = Field(default_factory=list)
    prioritized_questions: list[str] = Field(default_factory=list)
    reasoning: str = ""


Analysis = Annotated[
    Union[ExtractionAnalysis, EscalationAnalysis, NeedsAnalysis],
    Field(discriminator="type"),
]


class ExpertOpinion(BaseModel):
    """One expert invocation: its typed analysis plus call metadata."""

    model_config = ConfigDict(frozen=True)

    expert_name: str
    analysis: Analysis
    provider: str = "unknown"
    model: str = "unknown"
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


class EscalationOutput(BaseModel):
    should_escalate: bool
    reasoning: str
    triggers_evaluated: list[str] = Field(default_factory=list)
    triggered_triggers: list[str] = Field(default_factory=list)
    severity: Literal["low", "medium", "high", "critical"] = "low"


class NeedsOutput(BaseModel):
    missing_fields: list[str] = Field(default_factory=list)
    prioritized_questions: list[str] = Field(default_factory=list)
    reasoning: str


# ---------------------------------------------------------------------------
# Scoped expert inputs -- each expert sees only what it needs
# ---------------------------------------------------------------------------


class ExtractionExpertInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    supplier_message: str
    conversation_history: Optional[str] = None
    prior_extracted_data: Optional[ExtractedQuoteData] = None
    additional_question: Optional[str] = None


class EscalationExpertInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    supplier_message: str
    escalation_triggers: str
    product_name: str
    supplier_product_code: str
    conversation_history: Optional[str] = None
    extracted_data: Optional[ExtractedQuoteData] = None
    additional_question: Optional[str] = None


class NeedsExpertInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    extracted_data: Optional[ExtractedQuoteData] = None
    negotiation_rules: str
    product_name: str
    supplier_product_code: str
    quantity_requested: int
    conversation_history: Optional[str] = None
    additional_question: Optional[str] = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class CounterTerms(BaseModel):
    target_price: Optional[float] = None
    target_quantity: Optional[int] = None
    other_terms: Optional[str] = None

    @field_validator("target_quantity", mode="before")
    @classmethod
    def _round_quantity(cls, value: Any) -> Any:
        if isinstance(value, float):
            return round(value)
        return value


class OrchestratorDecision(BaseModel):
    """One synthesis step: either a final action or a request for an expert."""

    ready_to_act: bool
    action: Optional[AgentAction] = None
    reasoning: str
    next_expert: Optional[str] = None
    question_for_expert: Optional[str] = None
    counter_terms: Optional[CounterTerms] = None


class TraceIteration(BaseModel):
    decision: OrchestratorDecision
    reconsulted_expert: Optional[str] = None
    follow_up_opinion: Optional[ExpertOpinion] = None


class OrchestratorTrace(BaseModel):
    iterations: list[TraceIteration] = Field(default_factory=list)
    final_decision: OrchestratorDecision
    total_iterations: int


class DecisionOutput(BaseModel):
    """Post-guardrail action: the contract surfaced to the rest of the system.

    ``proposed_action`` is what the model (or pre-check) proposed;
    ``override`` names the deterministic rule that changed it, if any.
    """

    action: AgentAction
    reasoning: str
    proposed_action: Optional[AgentAction] = None
    override: Optional[str] = None


# ---------------------------------------------------------------------------
# Response crafting
# ---------------------------------------------------------------------------


class ResponseDraftOutput(BaseModel):
    email_text: str
    proposed_terms_summary: str = ""


class CounterOffer(BaseModel):
    draft_email: str
    proposed_terms: str


class ProposedApproval(BaseModel):
    quantity: int
    price: float
    total: float
    summary: str


class GeneratedResponse(BaseModel):
    counter_offer: Optional[CounterOffer] = None
    proposed_approval: Optional[ProposedApproval] = None
    clarification_email: Optional[str] = None
    escalation_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Caller boundary
# ---------------------------------------------------------------------------


class ProcessRequest(BaseModel):
    supplier_message: str
    order_information: OrderInformation
    conversation_history: Optional[str] = None
    prior_extracted_data: Optional[ExtractedQuoteData] = None
    turn_number: Optional[int] = None


class TurnTotals(BaseModel):
    calls: int = 0
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: Optional[float] = None


class ProcessResponse(BaseModel):
    action: AgentAction
    reasoning: str
    extracted_data: Optional[ExtractedQuoteData] = None
    policy_evaluation: DecisionOutput
    counter_offer: Optional[CounterOffer] = None
    proposed_approval: Optional[ProposedApproval] = None
    clarification_email: Optional[str] = None
    escalation_reason: Optional[str] = None
    expert_opinions: list[ExpertOpinion] = Field(default_factory=list)
    orchestrator_trace: Optional[OrchestratorTrace] = None
    totals: TurnTotals = Field(default_factory=TurnTotals)
