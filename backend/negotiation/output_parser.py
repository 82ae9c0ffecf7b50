"""Resilient parsing of free-form model output.

Models wrap JSON in markdown fences, lead with prose, leave raw newlines
inside string values and quote their numbers.  Everything here is pure:
the same input always yields the same tagged result, and nothing raises
past the parser boundary.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from negotiation.constants import CURRENCY_ALIASES
from negotiation.schemas import ExtractedQuoteData, LLMExtractionOutput

ModelT = TypeVar("ModelT", bound=BaseModel)

_PREVIEW_CHARS = 100
_FRAGMENT_CHARS = 500

_EXTRACTION_NUMERIC_FIELDS = (
    "quoted_price",
    "moq",
    "lead_time_min_days",
    "lead_time_max_days",
    "available_quantity",
    "confidence",
)
_EXTRACTION_INTEGER_FIELDS = (
    "moq",
    "lead_time_min_days",
    "lead_time_max_days",
    "available_quantity",
)
_NULL_STRINGS = ("", "null", "n/a")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParseSuccess(Generic[ModelT]):
    data: ModelT
    status: str = "ok"


@dataclass(frozen=True)
class ExtractionParseSuccess:
    data: ExtractedQuoteData
    confidence: float
    notes: list[str] = field(default_factory=list)
    status: str = "ok"


class _FailureDetail:
    error: str
    fragment: str

    def describe(self) -> str:
        """Error text with the offending model output attached."""
        if not self.fragment or self.fragment in self.error:
            return self.error
        return f"{self.error} (offending output: {self.fragment})"


@dataclass(frozen=True)
class ParseFailure(_FailureDetail):
    """No JSON object could be located or decoded."""

    error: str
    fragment: str
    status: str = "parse_error"


@dataclass(frozen=True)
class ValidationFailure(_FailureDetail):
    """JSON decoded but did not match the expected shape."""

    error: str
    fragment: str
    status: str = "validation_error"


ExtractionParseResult = Union[ExtractionParseSuccess, ParseFailure, ValidationFailure]
ModelParseResult = Union[ParseSuccess, ParseFailure, ValidationFailure]


# ---------------------------------------------------------------------------
# JSON location and repair
# ---------------------------------------------------------------------------


def _find_closing_brace(text: str, start: int) -> int:
    """Index of the ``}`` matching the ``{`` at *start*, or -1."""
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        char = text[i]
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def extract_json(raw: str) -> Optional[str]:
    """Locate the first JSON object in *raw*.

    Tries, in order: the text is already an object, a fenced code block,
    and finally the first ``{`` in the text with its structurally matching
    ``}``.
    """
    trimmed = raw.strip()

    if trimmed.startswith("{"):
        end = _find_closing_brace(trimmed, 0)
        if end != -1:
            return trimmed[: end + 1]

    fence_start = trimmed.find("```")
    if fence_start != -1:
        body_start = trimmed.find("\n", fence_start)
        fence_end = trimmed.find("```", fence_start + 3)
        if body_start != -1 and fence_end > body_start:
            inner = trimmed[body_start + 1 : fence_end].strip()
            if inner.startswith("{"):
                return inner

    first_brace = trimmed.find("{")
    if first_brace != -1:
        end = _find_closing_brace(trimmed, first_brace)
        if end != -1:
            return trimmed[first_brace : end + 1]

    return None


def sanitize_json_newlines(text: str) -> str:
    """Escape raw line breaks that appear inside JSON string literals.

    A ``\\r\\n`` pair collapses into a single escaped ``\\n``.
    """
    out: list[str] = []
    in_string = False
    escape = False
    i = 0
    while i < len(text):
        char = text[i]
        if escape:
            out.append(char)
            escape = False
        elif char == "\\":
            out.append(char)
            escape = True
        elif char == '"':
            in_string = not in_string
            out.append(char)
        elif in_string and char in "\r\n":
            out.append("\\n")
            if char == "\r" and i + 1 < len(text) and text[i + 1] == "\n":
                i += 1
        else:
            out.append(char)
        i += 1
    return "".join(out)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _to_number(value: Any) -> Any:
    """Coerce a numeric-looking value; unusable values become ``None``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower() in _NULL_STRINGS:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def coerce_numeric_fields(
    payload: dict[str, Any],
    numeric_fields: tuple[str, ...] = _EXTRACTION_NUMERIC_FIELDS,
    integer_fields: tuple[str, ...] = _EXTRACTION_INTEGER_FIELDS,
) -> dict[str, Any]:
    """Return a copy of *payload* with numeric fields cleaned up."""
    result = dict(payload)
    for name in numeric_fields:
        if name not in result:
            continue
        value = _to_number(result[name])
        if name in integer_fields and isinstance(value, (int, float)) and not isinstance(value, bool):
            value = _round_half_up(value)
        result[name] = value
    return result


def _drop_non_finite(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _drop_non_finite(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_drop_non_finite(v) for v in value]
    return value


def normalize_currency(code: Optional[str]) -> str:
    """Map a currency code or symbol to ISO 4217; defaults to ``USD``."""
    if not code or not code.strip():
        return "USD"
    stripped = code.strip()
    upper = stripped.upper()
    return CURRENCY_ALIASES.get(stripped) or CURRENCY_ALIASES.get(upper) or upper


def _fragment(text: str) -> str:
    return text[:_FRAGMENT_CHARS]


def _format_validation_error(exc: ValidationError) -> str:
    issues = [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors(include_url=False)
    ]
    return f"Validation failed: {json.dumps(issues, default=str)}"


def _load_object(raw: str) -> Union[dict[str, Any], ParseFailure]:
    json_text = extract_json(raw)
    if json_text is None:
        return ParseFailure(
            error="Could not find valid JSON in LLM output",
            fragment=_fragment(raw.strip()),
        )
    try:
        parsed = json.loads(sanitize_json_newlines(json_text))
    except json.JSONDecodeError:
        return ParseFailure(
            error=f"Invalid JSON: {json_text[:_PREVIEW_CHARS]}...",
            fragment=_fragment(json_text),
        )
    if not isinstance(parsed, dict):
        return ParseFailure(
            error=f"Invalid JSON: {json_text[:_PREVIEW_CHARS]}...",
            fragment=_fragment(json_text),
        )
    return parsed


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def parse_extraction_output(raw: str) -> ExtractionParseResult:
    """Parse an extraction payload into ``ExtractedQuoteData``.

    ``quoted_price_usd`` is left unset; conversion belongs to the extraction
    expert.
    """
    loaded = _load_object(raw)
    if isinstance(loaded, ParseFailure):
        return loaded

    coerced = coerce_numeric_fields(loaded)
    if coerced.get("confidence") is None:
        coerced.pop("confidence", None)
    try:
        output = LLMExtractionOutput.model_validate(coerced)
    except ValidationError as exc:
        return ValidationFailure(
            error=_format_validation_error(exc),
            fragment=_fragment(json.dumps(loaded, default=str)),
        )

    data = ExtractedQuoteData(
        quoted_price=output.quoted_price,
        quoted_price_currency=normalize_currency(output.quoted_price_currency),
        quoted_price_usd=None,
        available_quantity=output.available_quantity,
        moq=output.moq,
        lead_time_min_days=output.lead_time_min_days,
        lead_time_max_days=output.lead_time_max_days,
        payment_terms=output.payment_terms,
        validity_period=output.validity_period,
        raw_extraction_json=_drop_non_finite(loaded),
    )
    return ExtractionParseSuccess(
        data=data,
        confidence=max(0.0, min(1.0, output.confidence)),
        notes=list(output.notes),
    )


def parse_model_output(raw: str, model_cls: type[ModelT]) -> ModelParseResult:
    """Parse *raw* into an instance of *model_cls*.

    Used for escalation, needs, synthesis and drafting payloads.
    """
    loaded = _load_object(raw)
    if isinstance(loaded, ParseFailure):
        return loaded
    try:
        data = model_cls.model_validate(_drop_non_finite(loaded))
    except ValidationError as exc:
        return ValidationFailure(
            error=_format_validation_error(exc),
            fragment=_fragment(json.dumps(loaded, default=str)),
        )
    return ParseSuccess(data=data)
