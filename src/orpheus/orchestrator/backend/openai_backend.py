"""OpenAI Chat Completions backend (backend id ``codex``)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from orpheus.orchestrator.backend.http_client import ProviderClient
from orpheus.orchestrator.model_catalog import get_model
from orpheus.orchestrator.models import AttemptOutcome, Task, Usage

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com"

DEFAULT_SYSTEM_PROMPT = """\
You are Codex, an expert code generation assistant within the Orpheus dispatch system.

Your role:
- Generate clean, efficient, well-documented code
- Follow the conventions of the target language
- Provide working implementations, not pseudocode
- Include error handling where appropriate
- Be concise but complete

When asked to implement something, output the code directly."""


class OpenAIBackend:
    """Code generation backend served by OpenAI chat models."""

    backend_id = "codex"

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        model: str | None = None,
        max_tokens: int = 4_096,
        temperature: float = 0.7,
        base_url: str = OPENAI_BASE_URL,
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model or get_model("openai", "flagship")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = ProviderClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    def execute(self, task: Task) -> AttemptOutcome:
        started = time.perf_counter()
        response = self._client.post_json(
            "/v1/chat/completions",
            {
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "messages": [
                    {"role": "system", "content": task.system_prompt or DEFAULT_SYSTEM_PROMPT},
                    {"role": "user", "content": task.prompt},
                ],
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
            content=_first_choice(response.body),
            duration_ms=duration_ms,
            usage=_usage(response.body),
        )

    def probe_availability(self) -> bool:
        response = self._client.get("/v1/models")
        if not response.is_success:
            logger.debug("OpenAI probe failed: %s", response.error)
        return response.is_success

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAIBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _first_choice(body: dict[str, Any]) -> str:
    choices = body.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


def _usage(body: dict[str, Any]) -> Usage | None:
    usage = body.get("usage")
    if not isinstance(usage, dict):
        return None
    prompt_tokens = int(usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("completion_tokens") or 0)
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
    )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))
