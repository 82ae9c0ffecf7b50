"""Tests for the negotiation schemas."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from negotiation.schemas import (
    CounterTerms,
    EscalationAnalysis,
    ExpertOpinion,
    ExtractedQuoteData,
    NeedsAnalysis,
    OrchestratorDecision,
    ProcessRequest,
)


class TestExtractedQuoteDataMerge:
    def test_present_fields_win(self):
        old = ExtractedQuoteData(quoted_price=4.8, quoted_price_usd=4.8, moq=500, payment_terms="T/T")
        new = ExtractedQuoteData(quoted_price=4.1, quoted_price_usd=4.1, lead_time_min_days=21)

        merged = old.merge(new)

        assert merged.quoted_price == 4.1
        assert merged.moq == 500
        assert merged.lead_time_min_days == 21
        assert merged.payment_terms == "T/T"

    def test_currency_travels_with_price(self):
        old = ExtractedQuoteData(quoted_price=28.5, quoted_price_currency="CNY")

        assert old.merge(ExtractedQuoteData(moq=100)).quoted_price_currency == "CNY"
        assert old.merge(ExtractedQuoteData(quoted_price=4.0)).quoted_price_currency == "USD"

    def test_usd_value_travels_with_price(self):
        old = ExtractedQuoteData(quoted_price=4.0, quoted_price_currency="USD", quoted_price_usd=4.0)

        merged = old.merge(ExtractedQuoteData(quoted_price=90.0, quoted_price_currency="MXN"))

        assert (merged.quoted_price, merged.quoted_price_currency, merged.quoted_price_usd) == (90.0, "MXN", None)
        assert old.merge(ExtractedQuoteData(moq=800)).quoted_price_usd == 4.0

    def test_merge_none(self):
        data = ExtractedQuoteData(moq=1)
        assert data.merge(None) is data

    def test_frozen(self):
        with pytest.raises(ValidationError):
            ExtractedQuoteData().moq = 5


class TestExpertOpinion:
    def test_analysis_discriminator_round_trip(self):
        opinion = ExpertOpinion(
            expert_name="escalation",
            analysis=EscalationAnalysis(should_escalate=True, reasoning="MOQ too high", severity="medium"),
        )
        restored = ExpertOpinion.model_validate(opinion.model_dump(mode="json"))
        assert isinstance(restored.analysis, EscalationAnalysis)

    def test_needs_analysis_selected_by_type(self):
        opinion = ExpertOpinion.model_validate(
            {"expert_name": "needs", "analysis": {"type": "needs", "reasoning": "gaps"}}
        )
        assert isinstance(opinion.analysis, NeedsAnalysis)


class TestOrchestratorDecision:
    def test_counter_quantity_rounded(self):
        assert CounterTerms(target_quantity=1499.5).target_quantity == 1500

    def test_action_optional_when_not_ready(self):
        decision = OrchestratorDecision(ready_to_act=False, reasoning="need more", next_expert="needs")
        assert decision.action is None


class TestProcessRequest:
    def test_order_information_required(self):
        with pytest.raises(ValidationError):
            ProcessRequest(supplier_message="hi")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
