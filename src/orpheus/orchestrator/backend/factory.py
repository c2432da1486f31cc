"""Build provider backends from configured credentials."""

from __future__ import annotations

import logging

import httpx

from orpheus.config import ProviderSettings
from orpheus.orchestrator.backend.anthropic_backend import AnthropicBackend
from orpheus.orchestrator.backend.base import Backend
from orpheus.orchestrator.backend.gemini_backend import GeminiBackend
from orpheus.orchestrator.backend.openai_backend import OpenAIBackend

logger = logging.getLogger(__name__)


def build_backends(
    settings: ProviderSettings,
    *,
    transport: httpx.BaseTransport | None = None,
) -> list[Backend]:
    """One backend per provider with an API key, in ``sonnet, codex, gemini`` order."""

    common = {
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
        "timeout_seconds": settings.request_timeout_seconds,
        "transport": transport,
    }
    backends: list[Backend] = []
    if settings.anthropic_api_key:
        backends.append(
            AnthropicBackend(
                api_key=settings.anthropic_api_key,
                model=settings.anthropic_model,
                **common,
            ),
        )
    if settings.openai_api_key:
        backends.append(
            OpenAIBackend(api_key=settings.openai_api_key, model=settings.openai_model, **common),
        )
    if settings.google_api_key:
        backends.append(
            GeminiBackend(api_key=settings.google_api_key, model=settings.gemini_model, **common),
        )
    if not backends:
        logger.warning(
            "No provider API keys configured "
            "(ANTHROPIC_API_KEY, OPENAI_API_KEY, GOOGLE_AI_API_KEY)",
        )
    return backends
