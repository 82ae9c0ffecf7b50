"""Static lookup tables used by the negotiation engine.

Everything here is plain data so it can be extended without touching the
control flow that consumes it.
"""

from __future__ import annotations

# Orchestrator loop bound (number of synthesis calls per turn)
DEFAULT_MAX_ITERATIONS = 10

# Extraction confidence below this escalates before any synthesis call
MIN_EXTRACTION_CONFIDENCE = 0.3

# Substrings in extraction notes that signal the product cannot be supplied
ESCALATION_KEYWORDS: tuple[str, ...] = (
    "discontinu",
    "no longer",
    "out of stock",
    "stopped",
    "unavailable",
    "ceased production",
)

# A proposal whose reasoning contains one of these came from a fail-safe path
SYSTEM_FAILURE_MARKERS: tuple[str, ...] = (
    "failed",
    "unparseable",
    "iteration limit",
    "llm failure",
)

# Common aliases -> ISO 4217
CURRENCY_ALIASES: dict[str, str] = {
    "RMB": "CNY",
    "YUAN": "CNY",
    "¥": "CNY",
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
}

# Static conversion rates to USD (no live rate feed)
USD_RATES: dict[str, float] = {
    "USD": 1.0,
    "CNY": 0.14,
    "EUR": 1.08,
    "GBP": 1.27,
    "JPY": 0.0067,
    "KRW": 0.00074,
    "INR": 0.012,
    "THB": 0.028,
    "VND": 0.000041,
    "TWD": 0.031,
}

# Per-million-token pricing: (input, output) in USD
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-3-haiku-20240307": (0.25, 1.25),
    "claude-3-5-haiku-latest": (0.80, 4.00),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
    "claude-3-5-sonnet-latest": (3.00, 15.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gemini-1.5-flash": (0.075, 0.30),
}

# Expert identifiers the orchestrator may re-consult
EXPERT_NAMES: tuple[str, ...] = ("extraction", "escalation", "needs")
