"""OpenAI-compatible LLM client factory."""
from __future__ import annotations

from typing import TYPE_CHECKING

from mailscout.config import settings

if TYPE_CHECKING:
    from openai import AsyncOpenAI


def get_client() -> "AsyncOpenAI":
    """Build an AsyncOpenAI client from settings.

    SDK-level retries are disabled; the classifier client applies its own
    retry policy around every call.
    """
    from openai import AsyncOpenAI

    kwargs = {
        "api_key": settings.openai_api_key,
        "timeout": settings.classifier_timeout_seconds,
        "max_retries": 0,
    }
    base_url = settings.openai_base_url.strip()
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def get_model() -> str:
    """Get the active chat model id."""
    return settings.openai_model


_client: "AsyncOpenAI | None" = None


def client() -> "AsyncOpenAI":
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
