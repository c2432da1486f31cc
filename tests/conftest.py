"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import Iterable

import pytest

from orpheus.orchestrator.models import AttemptOutcome, Task

_ORPHEUS_ENV_VARS = (
    "ORPHEUS_MEMORY_PATH",
    "ORPHEUS_LOG_LEVEL",
    "ORPHEUS_SQLITE_BUSY_TIMEOUT_MS",
    "ORPHEUS_RETRY_ATTEMPTS",
    "ORPHEUS_RETRY_DELAY_SECONDS",
    "ORPHEUS_CALL_TIMEOUT_SECONDS",
    "ORPHEUS_DEFAULT_BACKEND",
    "ORPHEUS_PARALLEL_EXECUTION",
    "ORPHEUS_OPENAI_MODEL",
    "ORPHEUS_ANTHROPIC_MODEL",
    "ORPHEUS_GEMINI_MODEL",
    "ORPHEUS_MAX_TOKENS",
    "ORPHEUS_TEMPERATURE",
    "ORPHEUS_REQUEST_TIMEOUT_SECONDS",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_AI_API_KEY",
)


class ScriptedBackend:
    """Backend whose calls follow a script.

    Script steps: ``True`` succeeds, ``False`` fails, an exception instance is
    raised, an ``AttemptOutcome`` is returned as is. The last step repeats.
    """

    def __init__(
        self,
        backend_id: str,
        script: Iterable[object] = (True,),
        *,
        available: bool | Exception = True,
        latency_seconds: float = 0.0,
    ) -> None:
        self.backend_id = backend_id
        self.script = list(script)
        self.available = available
        self.latency_seconds = latency_seconds
        self.calls: list[str] = []
        self.probes = 0

    def execute(self, task: Task) -> AttemptOutcome:
        step = self.script[min(len(self.calls), len(self.script) - 1)]
        self.calls.append(task.id)
        if self.latency_seconds:
            time.sleep(self.latency_seconds)
        if isinstance(step, AttemptOutcome):
            return step
        if isinstance(step, BaseException):
            raise step
        if step:
            return AttemptOutcome.succeeded(
                backend_id=self.backend_id,
                content=f"{self.backend_id} answered",
                duration_ms=5,
            )
        return AttemptOutcome.failed(
            backend_id=self.backend_id,
            error=f"{self.backend_id} failed",
            duration_ms=5,
        )

    def probe_availability(self) -> bool:
        self.probes += 1
        if isinstance(self.available, Exception):
            raise self.available
        return self.available


@pytest.fixture()
def scripted_backend():
    return ScriptedBackend


@pytest.fixture()
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture()
def fake_sleep(recorded_sleeps):
    return recorded_sleeps.append


@pytest.fixture()
def clean_env(monkeypatch):
    """Drop every variable Settings.from_env reads."""

    for name in _ORPHEUS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
