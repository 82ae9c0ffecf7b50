"""Tests for the expert evaluators and the response crafter."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from fakes import ScriptedLLM, draft_reply, escalation_reply, extraction_reply
from negotiation.errors import ConfigurationError, ProviderExhaustedError
from negotiation.experts import (
    EscalationExpert,
    ExtractionExpert,
    NeedsExpert,
    ResponseCrafter,
    convert_to_usd,
)
from negotiation.experts.base import build_user_message
from negotiation.llm.types import AttemptLog
from negotiation.schemas import (
    AgentAction,
    CounterTerms,
    EscalationAnalysis,
    EscalationExpertInput,
    ExtractedQuoteData,
    ExtractionAnalysis,
    ExtractionExpertInput,
    NeedsAnalysis,
    NeedsExpertInput,
)


def _exhausted() -> ProviderExhaustedError:
    return ProviderExhaustedError(
        [AttemptLog(provider="claude", model="unknown", latency_ms=5, success=False, error="overloaded")]
    )


def _escalation_input(**fields) -> EscalationExpertInput:
    values = dict(
        supplier_message="MOQ is 2000 pcs",
        escalation_triggers="- Escalate if MOQ exceeds 1000 units",
        product_name="Steel Widget",
        supplier_product_code="SW-42",
    )
    values.update(fields)
    return EscalationExpertInput(**values)


def _needs_input(**fields) -> NeedsExpertInput:
    values = dict(
        negotiation_rules="Target price $3.50/unit.",
        product_name="Steel Widget",
        supplier_product_code="SW-42",
        quantity_requested=1000,
    )
    values.update(fields)
    return NeedsExpertInput(**values)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestConvertToUsd:
    def test_usd_passthrough(self):
        assert convert_to_usd(4.8, "USD") == 4.8

    def test_cny(self):
        assert convert_to_usd(28.5, "CNY") == 3.99

    def test_unknown_currency(self):
        assert convert_to_usd(10.0, "XYZ") is None

    def test_no_price(self):
        assert convert_to_usd(None, "USD") is None


class TestBuildUserMessage:
    def test_skips_empty_sections(self):
        message = build_user_message(("One", "a"), ("Two", None), ("Three", ""), ("Four", "d"))
        assert message == "## One\na\n\n## Four\nd"


# ---------------------------------------------------------------------------
# Input scoping
# ---------------------------------------------------------------------------


class TestScopedInputs:
    def test_extraction_input_rejects_rules(self):
        with pytest.raises(ValidationError):
            ExtractionExpertInput(supplier_message="hi", negotiation_rules="Target price $3.50/unit.")

    def test_escalation_input_rejects_pricing(self):
        with pytest.raises(ValidationError):
            _escalation_input(target_price=3.5)

    def test_needs_input_rejects_supplier_message(self):
        with pytest.raises(ValidationError):
            _needs_input(supplier_message="hi")

    @pytest.mark.asyncio
    async def test_extraction_prompt_never_sees_order_rules(self):
        llm = ScriptedLLM({"extract_quote": extraction_reply()})
        await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="Price is $4.00"))

        request = llm.requests[0]
        assert "Price is $4.00" in request.user_message
        assert "Acceptable range" not in request.user_message
        assert "Negotiation Rules" not in request.user_message


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestExtractionExpert:
    @pytest.mark.asyncio
    async def test_success_converts_to_usd(self):
        llm = ScriptedLLM({"extract_quote": extraction_reply(quoted_price=28.5, quoted_price_currency="RMB")})

        opinion = await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="28.5 RMB"))

        analysis = opinion.analysis
        assert isinstance(analysis, ExtractionAnalysis)
        assert analysis.success is True
        assert analysis.extracted_data.quoted_price_currency == "CNY"
        assert analysis.extracted_data.quoted_price_usd == 3.99
        assert analysis.confidence == 0.9
        assert opinion.expert_name == "extraction"
        assert opinion.provider == "fake"
        assert (opinion.input_tokens, opinion.output_tokens) == (100, 50)

    @pytest.mark.asyncio
    async def test_unparseable_output(self):
        llm = ScriptedLLM({"extract_quote": "Sorry, I cannot help with that."})

        opinion = await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="hello"))

        assert opinion.analysis.success is False
        assert opinion.analysis.error == (
            "Could not find valid JSON in LLM output (offending output: Sorry, I cannot help with that.)"
        )
        assert opinion.provider == "fake"

    @pytest.mark.asyncio
    async def test_validation_failure_keeps_fragment(self):
        llm = ScriptedLLM({"extract_quote": {"quoted_price": 4.1, "notes": "SUPPLIER-SAID-XYZ"}})

        opinion = await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="4.10"))

        assert opinion.analysis.success is False
        assert opinion.analysis.error.startswith("Validation failed: ")
        assert "(offending output: " in opinion.analysis.error
        assert "SUPPLIER-SAID-XYZ" in opinion.analysis.error

    @pytest.mark.asyncio
    async def test_provider_exhaustion_falls_back(self):
        llm = ScriptedLLM({"extract_quote": _exhausted()})

        opinion = await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="hello"))

        assert opinion.analysis.success is False
        assert "overloaded" in opinion.analysis.error
        assert opinion.provider == "unknown"

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self):
        llm = ScriptedLLM({"extract_quote": ConfigurationError("OPENAI_API_KEY must be set")})

        with pytest.raises(ConfigurationError):
            await ExtractionExpert(llm).analyze(ExtractionExpertInput(supplier_message="hello"))

    @pytest.mark.asyncio
    async def test_prior_data_and_question_in_prompt(self):
        llm = ScriptedLLM({"extract_quote": extraction_reply()})
        prior = ExtractedQuoteData(quoted_price=4.1, moq=800)

        await ExtractionExpert(llm).analyze(
            ExtractionExpertInput(
                supplier_message="Lead time is 3 weeks",
                prior_extracted_data=prior,
                additional_question="Is the MOQ per colour?",
            )
        )

        message = llm.requests[0].user_message
        assert "MOQ: 800" in message
        assert "Is the MOQ per colour?" in message


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


class TestEscalationExpert:
    @pytest.mark.asyncio
    async def test_trigger_fired(self):
        llm = ScriptedLLM(
            {
                "evaluate_escalation": escalation_reply(
                    should_escalate=True,
                    reasoning="MOQ 2000 exceeds 1000",
                    triggered_triggers=["Escalate if MOQ exceeds 1000 units"],
                    severity="medium",
                )
            }
        )

        opinion = await EscalationExpert(llm).analyze(_escalation_input())

        assert isinstance(opinion.analysis, EscalationAnalysis)
        assert opinion.analysis.should_escalate is True
        assert opinion.analysis.severity == "medium"
        assert "Escalate if MOQ exceeds 1000 units" in llm.requests[0].user_message

    @pytest.mark.asyncio
    async def test_unparseable_output_escalates_high(self):
        llm = ScriptedLLM({"evaluate_escalation": "not json"})

        opinion = await EscalationExpert(llm).analyze(_escalation_input())

        assert opinion.analysis.should_escalate is True
        assert opinion.analysis.severity == "high"
        assert opinion.analysis.reasoning.startswith("Escalation evaluation failed: ")
        assert "(offending output: not json)" in opinion.analysis.reasoning

    @pytest.mark.asyncio
    async def test_invalid_shape_keeps_fragment(self):
        llm = ScriptedLLM({"evaluate_escalation": {"should_escalate": "maybe", "reasoning": "FRAG-ESC"}})

        opinion = await EscalationExpert(llm).analyze(_escalation_input())

        assert opinion.analysis.should_escalate is True
        assert "Validation failed: " in opinion.analysis.reasoning
        assert "FRAG-ESC" in opinion.analysis.reasoning

    @pytest.mark.asyncio
    async def test_provider_exhaustion_escalates_high(self):
        llm = ScriptedLLM({"evaluate_escalation": _exhausted()})

        opinion = await EscalationExpert(llm).analyze(_escalation_input())

        assert opinion.analysis.should_escalate is True
        assert opinion.analysis.severity == "high"

    @pytest.mark.asyncio
    async def test_no_triggers_placeholder(self):
        llm = ScriptedLLM({"evaluate_escalation": escalation_reply()})

        await EscalationExpert(llm).analyze(_escalation_input(escalation_triggers=""))

        assert "No escalation triggers provided." in llm.requests[0].user_message


# ---------------------------------------------------------------------------
# Needs
# ---------------------------------------------------------------------------


class TestNeedsExpert:
    @pytest.mark.asyncio
    async def test_gaps_reported(self):
        llm = ScriptedLLM(
            {
                "analyze_needs": {
                    "missing_fields": ["lead_time"],
                    "prioritized_questions": ["What is the lead time for 1000 units?"],
                    "reasoning": "Lead time missing",
                }
            }
        )

        opinion = await NeedsExpert(llm).analyze(_needs_input())

        assert isinstance(opinion.analysis, NeedsAnalysis)
        assert opinion.analysis.missing_fields == ["lead_time"]
        assert "Quantity: 1000" in llm.requests[0].user_message

    @pytest.mark.asyncio
    async def test_failure_returns_empty_gaps(self):
        llm = ScriptedLLM({"analyze_needs": _exhausted()})

        opinion = await NeedsExpert(llm).analyze(_needs_input())

        assert opinion.analysis.missing_fields == []
        assert opinion.analysis.prioritized_questions == []
        assert opinion.analysis.reasoning.startswith("Needs analysis failed: ")

    @pytest.mark.asyncio
    async def test_invalid_shape_keeps_fragment(self):
        llm = ScriptedLLM({"analyze_needs": {"missing_fields": "lead_time", "reasoning": "FRAG-NEEDS"}})

        opinion = await NeedsExpert(llm).analyze(_needs_input())

        assert opinion.analysis.missing_fields == []
        assert "FRAG-NEEDS" in opinion.analysis.reasoning


# ---------------------------------------------------------------------------
# Response crafter
# ---------------------------------------------------------------------------


class TestResponseCrafter:
    @pytest.mark.asyncio
    async def test_accept_builds_approval_without_a_call(self, order_information):
        llm = ScriptedLLM({})
        data = ExtractedQuoteData(quoted_price=28.5, quoted_price_currency="CNY", quoted_price_usd=3.99, available_quantity=800)

        generated, usage = await ResponseCrafter(llm).craft(
            AgentAction.ACCEPT, "All rules satisfied", order_information, extracted_data=data
        )

        assert usage is None
        assert llm.requests == []
        approval = generated.proposed_approval
        assert (approval.quantity, approval.price, approval.total) == (800, 3.99, 3192.0)
        assert approval.summary == "All rules satisfied"

    @pytest.mark.asyncio
    async def test_accept_falls_back_to_target_quantity_and_quoted_price(self, order_information):
        data = ExtractedQuoteData(quoted_price=4.0, quoted_price_currency="XYZ")

        generated, _ = await ResponseCrafter(ScriptedLLM({})).craft(
            AgentAction.ACCEPT, "ok", order_information, extracted_data=data
        )

        assert generated.proposed_approval.quantity == 1000
        assert generated.proposed_approval.price == 4.0
        assert generated.proposed_approval.total == 4000.0

    @pytest.mark.asyncio
    async def test_counter_uses_terms(self, order_information):
        llm = ScriptedLLM({"generate_counter_offer": draft_reply("Could you do $3.60?", "$3.60/unit")})

        generated, usage = await ResponseCrafter(llm).craft(
            AgentAction.COUNTER,
            "Price above range",
            order_information,
            extracted_data=ExtractedQuoteData(quoted_price=4.8, quoted_price_usd=4.8),
            counter_terms=CounterTerms(target_price=3.6, target_quantity=1000),
        )

        assert generated.counter_offer.draft_email == "Could you do $3.60?"
        assert generated.counter_offer.proposed_terms == "$3.60/unit"
        assert usage.node_name == "counter_offer"
        message = llm.requests[0].user_message
        assert "Target price: $3.6 per unit" in message
        assert "Price above range" in message

    @pytest.mark.asyncio
    async def test_counter_failure_reports_escalation_reason(self, order_information):
        llm = ScriptedLLM({"generate_counter_offer": _exhausted()})

        generated, usage = await ResponseCrafter(llm).craft(AgentAction.COUNTER, "too high", order_information)

        assert generated.counter_offer is None
        assert generated.escalation_reason.startswith("Counter-offer generation failed: ")
        assert usage is None

    @pytest.mark.asyncio
    async def test_clarify_lists_needs_questions(self, order_information):
        llm = ScriptedLLM({"generate_clarification": draft_reply("What is your lead time?")})
        needs = NeedsAnalysis(
            missing_fields=["lead_time"],
            prioritized_questions=["What is the lead time?", "Is tooling included?"],
            reasoning="gaps",
        )

        generated, usage = await ResponseCrafter(llm).craft(
            AgentAction.CLARIFY, "Missing lead time", order_information, needs_analysis=needs
        )

        assert generated.clarification_email == "What is your lead time?"
        assert usage is not None
        message = llm.requests[0].user_message
        assert "1. What is the lead time?" in message
        assert "2. Is tooling included?" in message

    @pytest.mark.asyncio
    async def test_clarify_unparseable_draft(self, order_information):
        llm = ScriptedLLM({"generate_clarification": "plain prose, no json"})

        generated, usage = await ResponseCrafter(llm).craft(AgentAction.CLARIFY, "gaps", order_information)

        assert generated.clarification_email is None
        assert generated.escalation_reason.startswith("Clarification generation failed: ")
        assert generated.escalation_reason.endswith("(offending output: plain prose, no json)")
        assert usage is not None

    @pytest.mark.asyncio
    async def test_escalate_passes_reasoning_through(self, order_information):
        llm = ScriptedLLM({})

        generated, usage = await ResponseCrafter(llm).craft(AgentAction.ESCALATE, "MOQ too high", order_information)

        assert generated.escalation_reason == "MOQ too high"
        assert usage is None
        assert llm.requests == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
