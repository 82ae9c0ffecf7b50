"""Deterministic checks wrapped around the model's decisions.

Two layers, in fixed precedence:

1. ``check_pre_synthesis_escalation`` runs on the extraction result before
   any synthesis call is spent.
2. ``apply_guardrails`` runs on whatever action synthesis proposed and may
   override it.

The trigger and price-range regexes are heuristics.  They only recognise
"<subject> exceeds <number>" and "acceptable range is $X - $Y" phrasings;
anything else is left to the model.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from negotiation.constants import ESCALATION_KEYWORDS, MIN_EXTRACTION_CONFIDENCE, SYSTEM_FAILURE_MARKERS
from negotiation.schemas import AgentAction, DecisionOutput, ExtractedQuoteData, ExtractionAnalysis

logger = logging.getLogger(__name__)

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)"

_CLAUSE_SPLIT = re.compile(r"[\n;]+|\.\s+")
_COMPARATOR = re.compile(
    r"(?:\b(?:exceeds?|higher\s+than|over|above|greater\s+than)\b|>)\s*\$?\s*" + _NUMBER,
    re.IGNORECASE,
)
_PRICE_RANGE = re.compile(
    r"acceptable\s+(?:price\s+)?range\s*(?:is|of|:)?\s*\$\s*" + _NUMBER + r"\s*(?:-|–|—|to)\s*\$?\s*" + _NUMBER,
    re.IGNORECASE,
)


def _to_float(text: str) -> float:
    return float(text.replace(",", ""))


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _fmt_money(value: float) -> str:
    return f"${value:.2f}"


# ---------------------------------------------------------------------------
# Pre-synthesis checks
# ---------------------------------------------------------------------------


def check_pre_synthesis_escalation(extraction: ExtractionAnalysis) -> Optional[DecisionOutput]:
    """Escalate early when extraction failed, is unreliable, or reports unavailability.

    Returns ``None`` when synthesis should proceed.
    """
    if not extraction.success:
        return DecisionOutput(
            action=AgentAction.ESCALATE,
            reasoning=f"Extraction failed: {extraction.error or 'unknown error'}",
            override="extraction_failed",
        )

    if extraction.confidence < MIN_EXTRACTION_CONFIDENCE:
        return DecisionOutput(
            action=AgentAction.ESCALATE,
            reasoning=f"Extraction confidence too low ({extraction.confidence}) to evaluate against policy",
            override="low_confidence",
        )

    for keyword in ESCALATION_KEYWORDS:
        for note in extraction.notes:
            if keyword in note.lower():
                return DecisionOutput(
                    action=AgentAction.ESCALATE,
                    reasoning=f"Supplier indicated: {note}",
                    override="supplier_alarm",
                )

    return None


# ---------------------------------------------------------------------------
# Trigger re-derivation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiredTrigger:
    """A numeric trigger whose threshold the extracted data exceeds."""

    trigger: str
    label: str
    observed: float
    threshold: float
    is_price: bool = False

    def describe(self) -> str:
        fmt = _fmt_money if self.is_price else _fmt
        return f"{self.label} {fmt(self.observed)} exceeds {fmt(self.threshold)} from trigger '{self.trigger}'"


def _subject_value(clause: str, data: ExtractedQuoteData) -> Optional[tuple[str, Optional[float], bool]]:
    """Map a trigger clause to ``(label, observed value, is_price)`` by keyword."""
    lower = clause.lower()
    if "moq" in lower or "minimum order" in lower:
        return "MOQ", data.moq, False
    if "lead time" in lower or "lead-time" in lower:
        observed = data.lead_time_max_days if data.lead_time_max_days is not None else data.lead_time_min_days
        return "Lead time", observed, False
    if "price" in lower or "cost" in lower:
        return "Price (USD)", data.quoted_price_usd, True
    if "quantity" in lower:
        return "Available quantity", data.available_quantity, False
    return None


def find_fired_triggers(escalation_triggers: str, extracted_data: Optional[ExtractedQuoteData]) -> list[FiredTrigger]:
    """Re-derive numeric triggers from free text and test them against the data.

    A trigger fires only when the observed value is strictly greater than
    its threshold.  Percentages and clauses with no recognisable subject are
    skipped.
    """
    if extracted_data is None or not escalation_triggers:
        return []

    fired: list[FiredTrigger] = []
    for raw_clause in _CLAUSE_SPLIT.split(escalation_triggers):
        clause = raw_clause.strip().lstrip("-*• ").strip()
        if not clause:
            continue
        match = _COMPARATOR.search(clause)
        if match is None or clause[match.end():].lstrip().startswith("%"):
            continue
        subject = _subject_value(clause, extracted_data)
        if subject is None:
            continue
        label, observed, is_price = subject
        threshold = _to_float(match.group(1))
        if observed is not None and observed > threshold:
            fired.append(FiredTrigger(clause, label, observed, threshold, is_price))
    return fired


# ---------------------------------------------------------------------------
# Price compliance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceCompliance:
    compliant: bool
    price_usd: Optional[float] = None
    range_low: Optional[float] = None
    range_high: Optional[float] = None

    def describe(self) -> str:
        return (
            f"USD price {_fmt_money(self.price_usd)} exceeds acceptable range "
            f"{_fmt_money(self.range_low)} - {_fmt_money(self.range_high)}"
        )


def check_price_compliance(
    extracted_data: Optional[ExtractedQuoteData], negotiation_rules: str
) -> PriceCompliance:
    """Compare the USD price with the "acceptable range is $X - $Y" rule.

    Anything that cannot be checked (no range stated, no USD price) counts
    as compliant.  A price equal to the upper bound is compliant.
    """
    match = _PRICE_RANGE.search(negotiation_rules or "")
    if match is None:
        return PriceCompliance(compliant=True)
    low, high = _to_float(match.group(1)), _to_float(match.group(2))
    price = extracted_data.quoted_price_usd if extracted_data is not None else None
    if price is None:
        return PriceCompliance(compliant=True, range_low=low, range_high=high)
    return PriceCompliance(compliant=price <= high, price_usd=price, range_low=low, range_high=high)


# ---------------------------------------------------------------------------
# Post-synthesis overrides
# ---------------------------------------------------------------------------


def is_system_failure(reasoning: str) -> bool:
    lower = reasoning.lower()
    return any(marker in lower for marker in SYSTEM_FAILURE_MARKERS)


def apply_guardrails(
    action: AgentAction,
    reasoning: str,
    extracted_data: Optional[ExtractedQuoteData],
    escalation_triggers: str,
    negotiation_rules: str,
) -> DecisionOutput:
    """Apply the deterministic overrides to a proposed action."""
    if is_system_failure(reasoning):
        if action != AgentAction.ESCALATE:
            logger.warning("Guardrail: system-failure proposal %s forced to escalate", action.value)
        return DecisionOutput(
            action=AgentAction.ESCALATE,
            reasoning=reasoning,
            proposed_action=action,
            override="system_failure" if action != AgentAction.ESCALATE else None,
        )

    fired = find_fired_triggers(escalation_triggers, extracted_data)
    if fired:
        details = "; ".join(t.describe() for t in fired)
        if action == AgentAction.ESCALATE:
            return DecisionOutput(
                action=AgentAction.ESCALATE,
                reasoning=f"{reasoning} (confirmed: {details})",
                proposed_action=action,
            )
        logger.info("Guardrail: trigger fired, overriding %s to escalate: %s", action.value, details)
        return DecisionOutput(
            action=AgentAction.ESCALATE,
            reasoning=f"Guardrail override (model proposed {action.value}): {details}",
            proposed_action=action,
            override="trigger_fired",
        )

    compliance = check_price_compliance(extracted_data, negotiation_rules)

    if action == AgentAction.ESCALATE:
        if not compliance.compliant:
            downgrade = f"Escalation not supported by any trigger; countering instead: {compliance.describe()}"
        else:
            downgrade = (
                "Escalation not supported by any deterministic trigger; countering instead "
                f"(model reasoning: {reasoning})"
            )
        logger.info("Guardrail: unsubstantiated escalate downgraded to counter")
        return DecisionOutput(
            action=AgentAction.COUNTER,
            reasoning=downgrade,
            proposed_action=action,
            override="false_alarm_downgrade",
        )

    if action == AgentAction.ACCEPT and not compliance.compliant:
        logger.info("Guardrail: accept overridden to counter, %s", compliance.describe())
        return DecisionOutput(
            action=AgentAction.COUNTER,
            reasoning=f"Guardrail override (model proposed accept): {compliance.describe()}",
            proposed_action=action,
            override="price_out_of_range",
        )

    # A quoted price with no USD conversion cannot be checked against the range
    if (
        action == AgentAction.ACCEPT
        and compliance.range_high is not None
        and compliance.price_usd is None
        and extracted_data is not None
        and extracted_data.quoted_price is not None
    ):
        detail = (
            f"quoted price {_fmt(extracted_data.quoted_price)} {extracted_data.quoted_price_currency} "
            f"has no USD conversion to check against acceptable range "
            f"{_fmt_money(compliance.range_low)} - {_fmt_money(compliance.range_high)}"
        )
        logger.info("Guardrail: accept overridden to escalate, %s", detail)
        return DecisionOutput(
            action=AgentAction.ESCALATE,
            reasoning=f"Guardrail override (model proposed accept): {detail}",
            proposed_action=action,
            override="price_unverified",
        )

    return DecisionOutput(action=action, reasoning=reasoning, proposed_action=action)
