"""Extraction expert.

Turns the supplier's free-text message into ``ExtractedQuoteData``.  It sees
only raw conversation data (message, history, prior extraction) and never
the merchant's rules, targets or triggers.
"""

from __future__ import annotations

import logging
from typing import Optional

from negotiation.constants import USD_RATES
from negotiation.experts.base import Expert, build_user_message
from negotiation.formatting import format_extracted_data
from negotiation.llm.types import LLMRequest, OutputSchema
from negotiation.output_parser import ExtractionParseSuccess, parse_extraction_output
from negotiation.schemas import ExpertOpinion, ExtractionAnalysis, ExtractionExpertInput

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

EXTRACTION_SYSTEM_PROMPT = """\
You are a data extraction assistant that parses supplier emails for
purchase-order negotiations.

Given a supplier email, extract the quote as JSON with these fields:
- quoted_price: per-unit price, or null
- quoted_price_currency: ISO 4217 code ("USD", "CNY", "EUR", ...).  Use
  "USD" when prices are in dollars and no other currency is stated.
- available_quantity: the quantity being quoted (not the MOQ), or null
- moq: minimum order quantity, or null
- lead_time_min_days / lead_time_max_days: integers in days.  Convert
  weeks to days (1 week = 7 days).  A single value sets both; a range
  "25-30 days" sets min 25 and max 30.
- payment_terms: as stated ("T/T", "NET 30", "30% deposit"), or null
- validity_period: how long the quote is valid, or null
- confidence: 0.0-1.0
    0.9-1.0 all key fields clearly stated
    0.6-0.8 some fields present, some inferred or missing
    0.3-0.5 partial information, significant uncertainty
    0.0-0.2 no pricing data, email is conversational or unrelated
- notes: observations that do not fit the fields above, e.g.
  "Supplier mentioned product discontinuation",
  "Tiered pricing: 100-499 at $2.80, 500+ at $2.40",
  "Multiple items quoted, only first extracted"

Rules:
1. If no price is given, set quoted_price to null and keep confidence low.
2. For multiple items or tiered pricing, extract the first and list the
   rest in notes.
3. Never invent data.  A field not mentioned in the latest email is null.
4. "RMB" means "CNY".
5. When previously extracted data is provided, carry forward every field
   the latest email does not contradict.

Output ONLY valid JSON.
"""

EXTRACTION_JSON_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "quoted_price": {"type": ["number", "null"], "description": "Per-unit price quoted by the supplier"},
        "quoted_price_currency": {"type": "string", "description": "ISO 4217 currency code"},
        "available_quantity": {"type": ["integer", "null"], "description": "Quantity being quoted"},
        "moq": {"type": ["integer", "null"], "description": "Minimum order quantity"},
        "lead_time_min_days": {"type": ["integer", "null"], "description": "Minimum lead time in days"},
        "lead_time_max_days": {"type": ["integer", "null"], "description": "Maximum lead time in days"},
        "payment_terms": {"type": ["string", "null"], "description": "Payment terms as stated"},
        "validity_period": {"type": ["string", "null"], "description": "Quote validity"},
        "confidence": {"type": "number", "description": "Extraction confidence between 0 and 1"},
        "notes": {"type": "array", "items": {"type": "string"}, "description": "Other observations"},
    },
    "required": [
        "quoted_price",
        "quoted_price_currency",
        "available_quantity",
        "moq",
        "lead_time_min_days",
        "lead_time_max_days",
        "payment_terms",
        "validity_period",
        "confidence",
        "notes",
    ],
}

EXTRACTION_OUTPUT_SCHEMA = OutputSchema(
    name="extract_quote",
    description="Extract structured quote data from a supplier email",
    schema=EXTRACTION_JSON_SCHEMA,
)


def convert_to_usd(price: Optional[float], currency: str) -> Optional[float]:
    """Convert with the static rate table, rounded to cents.

    Returns ``None`` when there is no price or the currency is unknown.
    """
    if price is None:
        return None
    rate = USD_RATES.get(currency)
    if rate is None:
        return None
    return round(price * rate, 2)


def build_extraction_request(expert_input: ExtractionExpertInput) -> LLMRequest:
    prior = (
        format_extracted_data(expert_input.prior_extracted_data)
        if expert_input.prior_extracted_data is not None
        else None
    )
    user_message = build_user_message(
        ("Prior Conversation", expert_input.conversation_history),
        ("Previously Extracted Data (carry forward any fields not contradicted)", prior),
        ("Latest Supplier Email (extract from this)", f"---\n{expert_input.supplier_message}\n---"),
        ("Additional Question from Orchestrator", expert_input.additional_question),
    )
    return LLMRequest(
        system_prompt=EXTRACTION_SYSTEM_PROMPT,
        user_message=user_message,
        max_tokens=1024,
        temperature=0.0,
        output_schema=EXTRACTION_OUTPUT_SCHEMA,
    )


class ExtractionExpert(Expert[ExtractionExpertInput]):
    name = "extraction"

    async def _analyze(self, expert_input: ExtractionExpertInput) -> ExpertOpinion:
        result = await self._llm.call(build_extraction_request(expert_input))
        parsed = parse_extraction_output(result.response.content)

        if not isinstance(parsed, ExtractionParseSuccess):
            logger.warning("Extraction output rejected (%s): %s", parsed.status, parsed.describe())
            analysis = ExtractionAnalysis(success=False, error=parsed.describe())
            return self._opinion(analysis, result)

        data = parsed.data.model_copy(
            update={"quoted_price_usd": convert_to_usd(parsed.data.quoted_price, parsed.data.quoted_price_currency)}
        )
        analysis = ExtractionAnalysis(
            extracted_data=data,
            confidence=parsed.confidence,
            notes=parsed.notes,
            success=True,
        )
        logger.info(
            "Extraction succeeded: price=%s %s (usd=%s) confidence=%.2f",
            data.quoted_price, data.quoted_price_currency, data.quoted_price_usd, parsed.confidence,
        )
        return self._opinion(analysis, result)

    def _fallback(self, error: str) -> ExtractionAnalysis:
        return ExtractionAnalysis(success=False, error=error)
