"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

import config


@pytest.fixture(autouse=True)
def _fresh_cache():
    getters = (
        config.get_primary_provider,
        config.get_fallback_providers,
        config.get_max_retries,
        config.get_retry_delay_ms,
        config.get_call_timeout_s,
        config.get_max_iterations,
        config.get_turn_timeout_s,
        config.get_log_level,
        config.get_claude_api_key,
    )
    for getter in getters:
        getter.cache_clear()
    yield
    for getter in getters:
        getter.cache_clear()


class TestDefaults:
    def test_engine_defaults(self, monkeypatch):
        for name in (
            "NEGOTIATION_PRIMARY_PROVIDER",
            "NEGOTIATION_PRIMARY_MODEL",
            "NEGOTIATION_FALLBACK_PROVIDERS",
            "NEGOTIATION_MAX_RETRIES",
            "NEGOTIATION_CALL_TIMEOUT_S",
            "NEGOTIATION_MAX_ITERATIONS",
            "NEGOTIATION_TURN_TIMEOUT_S",
            "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        assert config.get_primary_provider() == ("claude", "claude-3-5-haiku-latest")
        assert config.get_fallback_providers() == (("openai", "gpt-4o-mini"),)
        assert config.get_max_retries() == 2
        assert config.get_call_timeout_s() == 60.0
        assert config.get_max_iterations() == 10
        assert config.get_turn_timeout_s() is None
        assert config.get_log_level() == "INFO"


class TestOverrides:
    def test_fallback_list(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_FALLBACK_PROVIDERS", " OpenAI:gpt-4o , gemini:gemini-1.5-flash ,")
        assert config.get_fallback_providers() == (("openai", "gpt-4o"), ("gemini", "gemini-1.5-flash"))

    def test_empty_fallback_list_disables_fallback(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_FALLBACK_PROVIDERS", "")
        assert config.get_fallback_providers() == ()

    def test_malformed_fallback_entry(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_FALLBACK_PROVIDERS", "openai")
        with pytest.raises(RuntimeError, match="provider:model"):
            config.get_fallback_providers()

    def test_integer_parsing(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_MAX_RETRIES", "5")
        assert config.get_max_retries() == 5

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_MAX_ITERATIONS", "ten")
        with pytest.raises(RuntimeError, match="must be an integer"):
            config.get_max_iterations()

    def test_turn_timeout(self, monkeypatch):
        monkeypatch.setenv("NEGOTIATION_TURN_TIMEOUT_S", "2.5")
        assert config.get_turn_timeout_s() == 2.5

    def test_anthropic_key_alias(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        assert config.get_claude_api_key() == "sk-ant-test"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
