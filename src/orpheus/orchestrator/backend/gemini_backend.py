"""Google Gemini generateContent backend (backend id ``gemini``)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from orpheus.orchestrator.backend.http_client import ProviderClient
from orpheus.orchestrator.model_catalog import get_model
from orpheus.orchestrator.models import AttemptOutcome, Task, Usage

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

DEFAULT_SYSTEM_PROMPT = """\
You are Gemini, a research and multimodal assistant within the Orpheus dispatch system.

Your role:
- Conduct thorough research and analysis
- Process and interpret multimodal inputs when provided
- Synthesize information from multiple sources
- Provide well-sourced, accurate information
- Handle complex, open-ended queries

Focus on breadth and accuracy of information."""


class GeminiBackend:
    """Research backend served by Gemini models."""

    backend_id = "gemini"

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        model: str | None = None,
        max_tokens: int = 4_096,
        temperature: float = 0.7,
        base_url: str = GEMINI_BASE_URL,
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model or get_model("google", "fast")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = ProviderClient(
            base_url=base_url,
            headers={"x-goog-api-key": api_key},
            timeout_seconds=timeout_seconds,
            transport=transport,
        )

    def execute(self, task: Task) -> AttemptOutcome:
        started = time.perf_counter()
        response = self._client.post_json(
            f"/v1beta/models/{self.model}:generateContent",
            {
                "systemInstruction": {
                    "parts": [{"text": task.system_prompt or DEFAULT_SYSTEM_PROMPT}],
                },
                "contents": [{"role": "user", "parts": [{"text": task.prompt}]}],
                "generationConfig": {
                    "maxOutputTokens": self.max_tokens,
                    "temperature": self.temperature,
                },
            },
        )
        duration_ms = _elapsed_ms(started)
        if not response.is_success:
            return AttemptOutcome.failed(
                backend_id=self.backend_id,
                error=response.error or "request failed",
                duration_ms=duration_ms,
            )
        text = _candidate_text(response.body)
        if text is None:
            # blocked prompts come back 200 with no candidates
            return AttemptOutcome.failed(
                backend_id=self.backend_id,
                error=_block_reason(response.body),
                duration_ms=duration_ms,
            )
        return AttemptOutcome.succeeded(
            backend_id=self.backend_id,
            content=text,
            duration_ms=duration_ms,
            usage=_usage(response.body),
        )

    def probe_availability(self) -> bool:
        response = self._client.get("/v1beta/models")
        if not response.is_success:
            logger.debug("Gemini probe failed: %s", response.error)
        return response.is_success

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GeminiBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _candidate_text(body: dict[str, Any]) -> str | None:
    candidates = body.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


def _block_reason(body: dict[str, Any]) -> str:
    feedback = body.get("promptFeedback") or {}
    reason = feedback.get("blockReason")
    return f"Prompt blocked: {reason}" if reason else "Empty response from Gemini"


def _usage(body: dict[str, Any]) -> Usage | None:
    metadata = body.get("usageMetadata")
    if not isinstance(metadata, dict):
        return None
    return Usage(
        prompt_tokens=int(metadata.get("promptTokenCount") or 0),
        completion_tokens=int(metadata.get("candidatesTokenCount") or 0),
        total_tokens=int(metadata.get("totalTokenCount") or 0),
    )


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))
