"""Offline backend that answers with the prompt itself."""

from __future__ import annotations

import time

from orpheus.orchestrator.models import AttemptOutcome, Task, Usage


class EchoBackend:
    """Deterministic local backend for dry runs and smoke checks."""

    def __init__(self, backend_id: str = "echo", *, prefix: str = "echo: ") -> None:
        self.backend_id = backend_id
        self.prefix = prefix

    def execute(self, task: Task) -> AttemptOutcome:
        started = time.perf_counter()
        content = f"{self.prefix}{task.prompt}"
        words_in = len(task.prompt.split())
        words_out = len(content.split())
        return AttemptOutcome.succeeded(
            backend_id=self.backend_id,
            content=content,
            duration_ms=max(0, int((time.perf_counter() - started) * 1000)),
            usage=Usage(
                prompt_tokens=words_in,
                completion_tokens=words_out,
                total_tokens=words_in + words_out,
            ),
        )

    def probe_availability(self) -> bool:
        return True
