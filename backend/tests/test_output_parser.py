"""Tests for the resilient model-output parser."""

from __future__ import annotations

import json

import pytest

from negotiation.output_parser import (
    ExtractionParseSuccess,
    ParseFailure,
    ParseSuccess,
    ValidationFailure,
    coerce_numeric_fields,
    extract_json,
    normalize_currency,
    parse_extraction_output,
    parse_model_output,
    sanitize_json_newlines,
)
from negotiation.schemas import EscalationOutput, OrchestratorDecision


# ---------------------------------------------------------------------------
# JSON location
# ---------------------------------------------------------------------------


class TestExtractJson:
    def test_clean_object(self):
        assert extract_json('{"a": 1}') == '{"a": 1}'

    def test_fenced_block(self):
        raw = 'Here you go:\n```json\n{"a": 1}\n```\nThanks'
        assert extract_json(raw) == '{"a": 1}'

    def test_prose_then_object(self):
        raw = 'The result is {"a": {"b": 2}} and nothing else'
        assert extract_json(raw) == '{"a": {"b": 2}}'

    def test_braces_inside_strings_are_ignored(self):
        raw = 'Note: {"text": "use } carefully", "n": 1} trailing'
        assert json.loads(extract_json(raw)) == {"text": "use } carefully", "n": 1}

    def test_no_object(self):
        assert extract_json("no json here") is None


class TestSanitizeNewlines:
    def test_escapes_newlines_inside_strings_only(self):
        text = '{\n"note": "line one\nline two"\n}'
        sanitized = sanitize_json_newlines(text)
        assert json.loads(sanitized) == {"note": "line one\nline two"}
        assert sanitized.startswith("{\n")

    def test_crlf_collapses_to_one_escape(self):
        sanitized = sanitize_json_newlines('{"a": "x\r\ny"}')
        assert sanitized == '{"a": "x\\ny"}'


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestCoercion:
    def test_numeric_strings(self):
        result = coerce_numeric_fields({"quoted_price": "4.5", "moq": "1000"})
        assert result == {"quoted_price": 4.5, "moq": 1000}

    @pytest.mark.parametrize("value", ["", "null", "N/A", "n/a", "about five"])
    def test_unusable_values_become_none(self, value):
        assert coerce_numeric_fields({"quoted_price": value})["quoted_price"] is None

    def test_integer_fields_round_half_up(self):
        result = coerce_numeric_fields({"moq": 2.5, "lead_time_min_days": "14.4"})
        assert result["moq"] == 3
        assert result["lead_time_min_days"] == 14

    def test_non_finite_becomes_none(self):
        assert coerce_numeric_fields({"quoted_price": float("nan")})["quoted_price"] is None

    def test_other_fields_untouched(self):
        assert coerce_numeric_fields({"payment_terms": "30"})["payment_terms"] == "30"


class TestNormalizeCurrency:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [("RMB", "CNY"), ("rmb", "CNY"), ("¥", "CNY"), ("€", "EUR"), ("usd", "USD"), (None, "USD"), ("  ", "USD")],
    )
    def test_aliases(self, code, expected):
        assert normalize_currency(code) == expected


# ---------------------------------------------------------------------------
# Extraction payloads
# ---------------------------------------------------------------------------


class TestParseExtractionOutput:
    def test_success(self):
        raw = json.dumps(
            {
                "quoted_price": "28.5",
                "quoted_price_currency": "RMB",
                "moq": "2000",
                "lead_time_min_days": 14,
                "lead_time_max_days": 21,
                "payment_terms": "T/T",
                "confidence": 0.85,
                "notes": ["tiered pricing available"],
            }
        )
        result = parse_extraction_output(raw)

        assert isinstance(result, ExtractionParseSuccess)
        assert result.data.quoted_price == 28.5
        assert result.data.quoted_price_currency == "CNY"
        assert result.data.quoted_price_usd is None
        assert result.data.moq == 2000
        assert result.confidence == 0.85
        assert result.notes == ["tiered pricing available"]
        assert result.data.raw_extraction_json["moq"] == "2000"

    def test_missing_confidence_defaults(self):
        result = parse_extraction_output('{"quoted_price": 4.0, "confidence": "n/a"}')
        assert isinstance(result, ExtractionParseSuccess)
        assert result.confidence == 0.5

    def test_confidence_clamped(self):
        result = parse_extraction_output('{"confidence": 1.7}')
        assert isinstance(result, ExtractionParseSuccess)
        assert result.confidence == 1.0

    def test_raw_newlines_in_notes(self):
        raw = '{"quoted_price": 4.0, "notes": ["first line\nsecond line"]}'
        result = parse_extraction_output(raw)
        assert isinstance(result, ExtractionParseSuccess)
        assert result.notes == ["first line\nsecond line"]

    def test_no_json(self):
        result = parse_extraction_output("I could not find a quote in that email.")
        assert isinstance(result, ParseFailure)
        assert result.status == "parse_error"
        assert result.error == "Could not find valid JSON in LLM output"
        assert result.describe() == (
            "Could not find valid JSON in LLM output (offending output: I could not find a quote in that email.)"
        )

    def test_invalid_json_keeps_fragment(self):
        raw = "{" + '"quoted_price": 4.0, ' * 20 + "oops}"
        result = parse_extraction_output(raw)
        assert isinstance(result, ParseFailure)
        assert result.error == "Invalid JSON: " + raw[:100] + "..."
        assert result.fragment == raw
        assert result.describe().endswith("(offending output: " + raw + ")")

    def test_wrong_shape_is_validation_failure(self):
        result = parse_extraction_output('{"notes": "should be a list"}')
        assert isinstance(result, ValidationFailure)
        assert result.status == "validation_error"
        assert result.error.startswith("Validation failed: ")
        assert "should be a list" in result.fragment
        assert result.describe().endswith("(offending output: {\"notes\": \"should be a list\"})")

    def test_parsing_is_deterministic(self):
        raw = '```json\n{"quoted_price": "4.20", "moq": 999.5, "confidence": 0.7}\n```'
        assert parse_extraction_output(raw) == parse_extraction_output(raw)


# ---------------------------------------------------------------------------
# Generic payloads
# ---------------------------------------------------------------------------


class TestParseModelOutput:
    def test_orchestrator_decision(self):
        raw = 'Decision:\n```json\n{"ready_to_act": true, "action": "counter", "reasoning": "too high",' \
              ' "counter_terms": {"target_price": 3.8, "target_quantity": 999.6}}\n```'
        result = parse_model_output(raw, OrchestratorDecision)

        assert isinstance(result, ParseSuccess)
        assert result.data.action.value == "counter"
        assert result.data.counter_terms.target_quantity == 1000

    def test_invalid_action(self):
        result = parse_model_output('{"ready_to_act": true, "action": "haggle", "reasoning": "x"}', OrchestratorDecision)
        assert isinstance(result, ValidationFailure)

    def test_missing_required_field(self):
        result = parse_model_output('{"should_escalate": true}', EscalationOutput)
        assert isinstance(result, ValidationFailure)
        assert "reasoning" in result.error

    def test_array_is_not_an_object(self):
        result = parse_model_output("[1, 2, 3]", EscalationOutput)
        assert isinstance(result, ParseFailure)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
