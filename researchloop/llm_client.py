"""LLM client factory for Anthropic and OpenRouter."""
from __future__ import annotations

from researchloop.config import settings


def _use_openrouter() -> bool:
    return bool(settings.openrouter_model and settings.openrouter_api_key)


def get_client():
    """Build an AsyncAnthropic client.

    Points at OpenRouter's Anthropic-compatible endpoint when both an
    OpenRouter key and model are configured, otherwise at Anthropic.
    """
    import anthropic

    if _use_openrouter():
        return anthropic.AsyncAnthropic(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
    return anthropic.AsyncAnthropic(
        api_key=settings.anthropic_api_key,
        timeout=settings.llm_timeout_seconds,
        max_retries=0,
    )


def get_model() -> str:
    if _use_openrouter():
        return settings.openrouter_model
    return settings.default_model


_client = None


def client():
    """Get or create the shared LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
