"""Narrowly scoped expert evaluators and the response crafter."""

from negotiation.experts.base import Expert
from negotiation.experts.escalation import EscalationExpert
from negotiation.experts.extraction import ExtractionExpert, convert_to_usd
from negotiation.experts.needs import NeedsExpert
from negotiation.experts.response_crafter import ResponseCrafter

__all__ = [
    "EscalationExpert",
    "Expert",
    "ExtractionExpert",
    "NeedsExpert",
    "ResponseCrafter",
    "convert_to_usd",
]
