"""Escalation expert: checks the merchant's escalation triggers.

Sees the supplier message, trigger text and product identity.  It never
sees price targets or negotiation rules.  On any failure it reports a
high-severity escalation.
"""

from __future__ import annotations

import logging

from negotiation.errors import ExpertOutputError
from negotiation.experts.base import Expert, build_user_message
from negotiation.formatting import format_extracted_data
from negotiation.llm.types import LLMRequest, OutputSchema
from negotiation.output_parser import ParseSuccess, parse_model_output
from negotiation.schemas import EscalationAnalysis, EscalationExpertInput, EscalationOutput, ExpertOpinion

logger = logging.getLogger(__name__)

ESCALATION_SYSTEM_PROMPT = """\
You are an escalation specialist for a purchase-order negotiation system.

Your ONLY job is to decide whether any of the merchant's escalation
triggers has fired, given the supplier's message and any extracted data.

For each trigger:
1. Parse the condition (e.g. "MOQ exceeds 1000", "product discontinued").
2. Compare it against the supplier message and extracted data.
3. Decide whether it fired.

Rules:
1. Evaluate EVERY trigger listed.  Do not skip any.
2. A trigger fires only when the condition is CLEARLY met.
3. Numeric triggers (price, MOQ, lead time) compare the extracted value
   against the threshold.
4. Qualitative triggers (discontinued, unavailable) need clear evidence
   in the supplier's message.
5. When in doubt, do NOT fire.
6. Do not judge whether the quote is good or bad.
7. With no triggers listed, should_escalate is false.

Severity:
- "low": borderline
- "medium": clear trigger, needs merchant attention
- "high": serious issue (product unavailable, price far above threshold)
- "critical": deal-breaker (discontinued, supplier refusing to deal)

Output ONLY valid JSON.
"""

ESCALATION_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "should_escalate": {"type": "boolean", "description": "True if any trigger condition is met"},
        "reasoning": {"type": "string", "description": "Explanation of the evaluation"},
        "triggers_evaluated": {"type": "array", "items": {"type": "string"}, "description": "Triggers evaluated"},
        "triggered_triggers": {"type": "array", "items": {"type": "string"}, "description": "Triggers that fired"},
        "severity": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
    },
    "required": ["should_escalate", "reasoning", "triggers_evaluated", "triggered_triggers", "severity"],
}

ESCALATION_OUTPUT_SCHEMA = OutputSchema(
    name="evaluate_escalation",
    description="Evaluate a supplier message against escalation triggers",
    schema=ESCALATION_JSON_SCHEMA,
)


def build_escalation_request(expert_input: EscalationExpertInput) -> LLMRequest:
    extracted = (
        format_extracted_data(expert_input.extracted_data)
        if expert_input.extracted_data is not None
        else None
    )
    user_message = build_user_message(
        ("Conversation History", expert_input.conversation_history),
        ("Supplier's Latest Message", f"---\n{expert_input.supplier_message}\n---"),
        ("Extracted Data", extracted),
        ("Product", f"{expert_input.product_name} ({expert_input.supplier_product_code})"),
        ("Escalation Triggers to Evaluate", expert_input.escalation_triggers or "No escalation triggers provided."),
        ("Additional Question from Orchestrator", expert_input.additional_question),
    )
    return LLMRequest(
        system_prompt=ESCALATION_SYSTEM_PROMPT,
        user_message=user_message,
        max_tokens=1024,
        temperature=0.0,
        output_schema=ESCALATION_OUTPUT_SCHEMA,
    )


class EscalationExpert(Expert[EscalationExpertInput]):
    name = "escalation"

    async def _analyze(self, expert_input: EscalationExpertInput) -> ExpertOpinion:
        result = await self._llm.call(build_escalation_request(expert_input))
        parsed = parse_model_output(result.response.content, EscalationOutput)
        if not isinstance(parsed, ParseSuccess):
            raise ExpertOutputError(parsed.describe())

        output: EscalationOutput = parsed.data
        if output.should_escalate:
            logger.info("Escalation expert fired: %s", output.triggered_triggers)
        return self._opinion(EscalationAnalysis(**output.model_dump()), result)

    def _fallback(self, error: str) -> EscalationAnalysis:
        return EscalationAnalysis(
            should_escalate=True,
            reasoning=f"Escalation evaluation failed: {error}",
            severity="high",
        )
