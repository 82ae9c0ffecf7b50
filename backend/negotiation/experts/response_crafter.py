"""Response crafter: turns the final action into outbound text.

accept    -> ``ProposedApproval`` computed locally, no model call
counter   -> one model call drafting a counter-offer email
clarify   -> one model call drafting a clarification email
escalate  -> the decision reasoning becomes the escalation reason

A failed drafting call never raises; it comes back as an
``escalation_reason`` and the pipeline escalates the turn.
"""

from __future__ import annotations

import logging
from typing import Optional

from negotiation.experts.base import build_user_message
from negotiation.formatting import format_extracted_data
from negotiation.llm.types import LLMCaller, LLMRequest, OutputSchema
from negotiation.output_parser import ParseSuccess, parse_model_output
from negotiation.schemas import (
    AgentAction,
    CounterOffer,
    CounterTerms,
    ExtractedQuoteData,
    GeneratedResponse,
    NeedsAnalysis,
    OrderInformation,
    ProposedApproval,
    ResponseDraftOutput,
)
from negotiation.usage import TokenUsage, usage_from_response

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

COUNTER_OFFER_SYSTEM_PROMPT = """\
You are drafting a counter-offer email from a merchant to their supplier.

Write a concise, professional email that acknowledges the supplier's quote
and proposes specific better terms.  Keep a warm tone.

Rules:
1. No subject line, greeting or signature; those are added separately.
2. Never reveal the merchant's target price, acceptable range, pricing
   rules, negotiation strategy or what they previously paid.
3. Propose a specific number in natural language ("Could you do $X?")
   without explaining the internal logic behind it.
4. Never mention that the email was drafted automatically.

Output ONLY valid JSON with:
- email_text: the email body
- proposed_terms_summary: one line summarising the proposal
"""

CLARIFICATION_SYSTEM_PROMPT = """\
You are drafting a clarification email from a merchant to their supplier.

Write a concise, professional email that acknowledges what the supplier
has provided and clearly asks for the missing information.

Rules:
1. No subject line, greeting or signature.
2. Never mention that the email was drafted automatically.

Output ONLY valid JSON with:
- email_text: the email body
- proposed_terms_summary: one line summarising what is being asked
"""

RESPONSE_DRAFT_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "email_text": {"type": "string", "description": "Email body text"},
        "proposed_terms_summary": {"type": "string", "description": "One-line summary"},
    },
    "required": ["email_text", "proposed_terms_summary"],
}

COUNTER_OFFER_OUTPUT_SCHEMA = OutputSchema(
    name="generate_counter_offer",
    description="Generate a professional counter-offer email",
    schema=RESPONSE_DRAFT_JSON_SCHEMA,
)

CLARIFICATION_OUTPUT_SCHEMA = OutputSchema(
    name="generate_clarification",
    description="Generate a professional clarification email",
    schema=RESPONSE_DRAFT_JSON_SCHEMA,
)


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def _order_context(oi: OrderInformation) -> str:
    last_known = f"${oi.pricing.last_known_price:.2f}" if oi.pricing.last_known_price is not None else "N/A"
    lines = [
        f"Product: {oi.product.product_name} ({oi.product.supplier_product_code})",
        f"Quantity: {oi.quantity.target_quantity}",
        f"Last Known Price: {last_known}",
    ]
    if oi.product.packaging_requirements:
        lines.append(f"Packaging: {oi.product.packaging_requirements}")
    if oi.metadata and oi.metadata.order_notes:
        lines.append(f"Notes: {oi.metadata.order_notes}")
    return "\n".join(lines)


def build_counter_offer_request(
    extracted_data: Optional[ExtractedQuoteData],
    reasoning: str,
    counter_terms: Optional[CounterTerms],
    order_information: OrderInformation,
    conversation_history: Optional[str] = None,
) -> LLMRequest:
    terms: list[str] = []
    if counter_terms is not None:
        if counter_terms.target_price:
            terms.append(f"Target price: ${counter_terms.target_price} per unit")
        if counter_terms.target_quantity:
            terms.append(f"Quantity: {counter_terms.target_quantity} units")
        if counter_terms.other_terms:
            terms.append(f"Other: {counter_terms.other_terms}")

    user_message = build_user_message(
        ("Conversation History", conversation_history),
        ("Supplier's Quote", format_extracted_data(extracted_data)),
        ("Why We're Countering", reasoning),
        ("Counter Terms", "\n".join(terms) or "Negotiate for better terms based on the reasoning above."),
        ("Order Context", _order_context(order_information)),
    )
    return LLMRequest(
        system_prompt=COUNTER_OFFER_SYSTEM_PROMPT,
        user_message=user_message,
        max_tokens=2048,
        temperature=0.0,
        output_schema=COUNTER_OFFER_OUTPUT_SCHEMA,
    )


def build_clarification_request(
    extracted_data: Optional[ExtractedQuoteData],
    reasoning: str,
    order_information: OrderInformation,
    needs_analysis: Optional[NeedsAnalysis] = None,
    conversation_history: Optional[str] = None,
) -> LLMRequest:
    if needs_analysis is not None:
        questions = "\n".join(f"{i}. {q}" for i, q in enumerate(needs_analysis.prioritized_questions, start=1))
        gaps = (
            ("Missing Information", f"Fields needed: {', '.join(needs_analysis.missing_fields)}"),
            ("Questions to Ask (in priority order)", questions),
        )
    else:
        gaps = (("Why We Need Clarification", reasoning),)

    user_message = build_user_message(
        ("Conversation History", conversation_history),
        ("What We Know So Far", format_extracted_data(extracted_data) if extracted_data else "No data extracted yet."),
        *gaps,
        ("Order Context", _order_context(order_information)),
    )
    return LLMRequest(
        system_prompt=CLARIFICATION_SYSTEM_PROMPT,
        user_message=user_message,
        max_tokens=2048,
        temperature=0.0,
        output_schema=CLARIFICATION_OUTPUT_SCHEMA,
    )


# ---------------------------------------------------------------------------
# Crafter
# ---------------------------------------------------------------------------


class ResponseCrafter:
    """Drafts the outbound artefact for a final action."""

    def __init__(self, llm: LLMCaller) -> None:
        self._llm = llm

    async def craft(
        self,
        action: AgentAction,
        reasoning: str,
        order_information: OrderInformation,
        extracted_data: Optional[ExtractedQuoteData] = None,
        counter_terms: Optional[CounterTerms] = None,
        needs_analysis: Optional[NeedsAnalysis] = None,
        conversation_history: Optional[str] = None,
    ) -> tuple[GeneratedResponse, Optional[TokenUsage]]:
        """Return the drafted response and the usage of its model call, if any."""
        if action == AgentAction.ACCEPT:
            return build_accept_response(extracted_data, order_information, reasoning), None

        if action == AgentAction.COUNTER:
            request = build_counter_offer_request(
                extracted_data, reasoning, counter_terms, order_information, conversation_history
            )
            draft, usage, error = await self._draft(request, "counter_offer")
            if draft is None:
                return GeneratedResponse(escalation_reason=f"Counter-offer generation failed: {error}"), usage
            return (
                GeneratedResponse(
                    counter_offer=CounterOffer(draft_email=draft.email_text, proposed_terms=draft.proposed_terms_summary)
                ),
                usage,
            )

        if action == AgentAction.CLARIFY:
            request = build_clarification_request(
                extracted_data, reasoning, order_information, needs_analysis, conversation_history
            )
            draft, usage, error = await self._draft(request, "clarification")
            if draft is None:
                return GeneratedResponse(escalation_reason=f"Clarification generation failed: {error}"), usage
            return GeneratedResponse(clarification_email=draft.email_text), usage

        return GeneratedResponse(escalation_reason=reasoning), None

    async def _draft(
        self, request: LLMRequest, node_name: str
    ) -> tuple[Optional[ResponseDraftOutput], Optional[TokenUsage], Optional[str]]:
        try:
            result = await self._llm.call(request)
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s drafting call failed: %s", node_name, exc)
            return None, None, str(exc)

        usage = usage_from_response(result.response, node_name)
        parsed = parse_model_output(result.response.content, ResponseDraftOutput)
        if not isinstance(parsed, ParseSuccess):
            logger.warning("%s draft rejected (%s): %s", node_name, parsed.status, parsed.describe())
            return None, usage, parsed.describe()
        return parsed.data, usage, None


def build_accept_response(
    extracted_data: Optional[ExtractedQuoteData],
    order_information: OrderInformation,
    reasoning: str,
) -> GeneratedResponse:
    """Approval figures: available (else target) quantity times USD (else quoted) price."""
    quantity = order_information.quantity.target_quantity
    price = 0.0
    if extracted_data is not None:
        if extracted_data.available_quantity is not None:
            quantity = extracted_data.available_quantity
        if extracted_data.quoted_price_usd is not None:
            price = extracted_data.quoted_price_usd
        elif extracted_data.quoted_price is not None:
            price = extracted_data.quoted_price
    return GeneratedResponse(
        proposed_approval=ProposedApproval(
            quantity=quantity,
            price=price,
            total=round(quantity * price, 2),
            summary=reasoning,
        )
    )
