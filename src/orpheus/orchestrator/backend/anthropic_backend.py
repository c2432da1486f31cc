"""Anthropic Messages API backend (backend id ``sonnet``)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from orpheus.orchestrator.backend.http_client import ProviderClient
from orpheus.orchestrator.model_catalog import get_model
from orpheus.orchestrator.models import AttemptOutcome, Task, Usage

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"

DEFAULT_SYSTEM_PROMPT = """\
You are Sonnet, a reasoning and analysis assistant within the Orpheus dispatch system.

Your role:
- Provide thoughtful, well-reasoned analysis
- Break down complex problems into clear components
- Consider multiple perspectives when relevant
- Be direct and substantive
- Support conclusions with clear reasoning

Focus on quality of thought over quantity of output."""


class AnthropicBackend:
    """Reasoning backend served by Claude models."""

    backend_id = "sonnet"

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        model: str | None = None,
        max_tokens: int = 4_096,
        temperature: float = 0.7,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model or get_model("anthropic", "execution")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = ProviderClient(
            base_url=base_url,
            headers={"x-api-key": api_key, "anthropic-version": ANTHROPIC_API_VERSION},
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    def execute(self, task: Task) -> AttemptOutcome:
        started = time.perf_counter()
        response = self._client.post_json(
            "/v1/messages",
            {
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "system": task.system_prompt or DEFAULT_SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": task.prompt}],
            },
        )
        duration_ms = _elapsed_ms(started)
        if not response.is_success:
            return AttemptOutcome.failed(
                backend_id=self.backend_id,
                error=response.error or "request failed",
                duration_ms=duration_ms,
            )
        return AttemptOutcome.succeeded(
            backend_id=self.backend_id,
            content=_text_blocks(response.body),
            duration_ms=duration_ms,
            usage=_usage(response.body),
        )

    def probe_availability(self) -> bool:
        response = self._client.get("/v1/models")
        if not response.is_success:
            logger.debug("Anthropic probe failed: %s", response.error)
        return response.is_success

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AnthropicBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _text_blocks(body: dict[str, Any]) -> str:
    blocks = body.get("content") or []
    return "\n".join(
        block.get("text", "")
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    )


def _usage(body: dict[str, Any]) -> Usage | None:
    usage = body.get("usage")
    if not isinstance(usage, dict):
        return None
    input_tokens = int(usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("output_tokens") or 0)
    return Usage(
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
    )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))
