from __future__ import annotations

from unittest.mock import patch

from researchloop import llm_client


def test_uses_openrouter_when_key_and_model_are_set(monkeypatch):
    monkeypatch.setattr(llm_client.settings, "openrouter_api_key", "or-key")
    monkeypatch.setattr(llm_client.settings, "openrouter_model", "anthropic/claude-sonnet-4.5")

    with patch("anthropic.AsyncAnthropic") as mock_client:
        llm_client.get_client()

    kwargs = mock_client.call_args.kwargs
    assert kwargs["api_key"] == "or-key"
    assert kwargs["base_url"] == llm_client.settings.openrouter_base_url
    assert kwargs["max_retries"] == 0
    assert llm_client.get_model() == "anthropic/claude-sonnet-4.5"


def test_falls_back_to_anthropic(monkeypatch):
    monkeypatch.setattr(llm_client.settings, "openrouter_api_key", "")
    monkeypatch.setattr(llm_client.settings, "anthropic_api_key", "sk-test")

    with patch("anthropic.AsyncAnthropic") as mock_client:
        llm_client.get_client()

    kwargs = mock_client.call_args.kwargs
    assert kwargs["api_key"] == "sk-test"
    assert "base_url" not in kwargs
    assert llm_client.get_model() == llm_client.settings.default_model


def test_client_is_cached(monkeypatch):
    monkeypatch.setattr(llm_client, "_client", None)
    with patch.object(llm_client, "get_client", return_value=object()) as factory:
        first = llm_client.client()
        second = llm_client.client()

    assert first is second
    factory.assert_called_once()
