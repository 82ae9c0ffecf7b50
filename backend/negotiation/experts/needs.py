"""Needs expert: finds the information gaps in a supplier's quote.

Only consulted on demand by the orchestrator.  Sees extracted data and the
negotiation rules, never the escalation triggers.
"""

from __future__ import annotations

from negotiation.errors import ExpertOutputError
from negotiation.experts.base import Expert, build_user_message
from negotiation.formatting import format_extracted_data
from negotiation.llm.types import LLMRequest, OutputSchema
from negotiation.output_parser import ParseSuccess, parse_model_output
from negotiation.schemas import ExpertOpinion, NeedsAnalysis, NeedsExpertInput, NeedsOutput

NEEDS_SYSTEM_PROMPT = """\
You are an information-gap analyst for a purchase-order negotiation system.

Given the data extracted from a supplier's quote and the merchant's
negotiation rules, determine:
1. Which fields are missing that are needed to evaluate the quote.
2. Which questions to ask the supplier, most important first.
3. Why those questions matter.

Rules:
1. Only flag a field when it is genuinely needed to evaluate the quote.
2. A missing field that the rules mention (price, MOQ, lead time, payment
   terms) is high priority.
3. Prefer questions that unlock a decision (accept, counter or escalate).
4. Phrase questions professionally; they will be sent to the supplier.
5. Never ask about fields already known.
6. With nothing missing, return empty lists.

Output ONLY valid JSON.
"""

NEEDS_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "missing_fields": {"type": "array", "items": {"type": "string"}, "description": "Missing or unclear fields"},
        "prioritized_questions": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Questions for the supplier, most important first",
        },
        "reasoning": {"type": "string", "description": "Why these questions matter"},
    },
    "required": ["missing_fields", "prioritized_questions", "reasoning"],
}

NEEDS_OUTPUT_SCHEMA = OutputSchema(
    name="analyze_needs",
    description="Analyze information gaps in the supplier's quote",
    schema=NEEDS_JSON_SCHEMA,
)


def build_needs_request(expert_input: NeedsExpertInput) -> LLMRequest:
    user_message = build_user_message(
        ("Conversation History", expert_input.conversation_history),
        ("Extracted Data", format_extracted_data(expert_input.extracted_data)),
        ("Merchant's Negotiation Rules", expert_input.negotiation_rules),
        (
            "Order Context",
            f"Product: {expert_input.product_name} ({expert_input.supplier_product_code})\n"
            f"Quantity: {expert_input.quantity_requested}",
        ),
        ("Additional Question from Orchestrator", expert_input.additional_question),
    )
    return LLMRequest(
        system_prompt=NEEDS_SYSTEM_PROMPT,
        user_message=user_message,
        max_tokens=1024,
        temperature=0.0,
        output_schema=NEEDS_OUTPUT_SCHEMA,
    )


class NeedsExpert(Expert[NeedsExpertInput]):
    name = "needs"

    async def _analyze(self, expert_input: NeedsExpertInput) -> ExpertOpinion:
        result = await self._llm.call(build_needs_request(expert_input))
        parsed = parse_model_output(result.response.content, NeedsOutput)
        if not isinstance(parsed, ParseSuccess):
            raise ExpertOutputError(parsed.describe())
        return self._opinion(NeedsAnalysis(**parsed.data.model_dump()), result)

    def _fallback(self, error: str) -> NeedsAnalysis:
        return NeedsAnalysis(reasoning=f"Needs analysis failed: {error}")
