"""Backend interface for task execution."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from orpheus.orchestrator.models import AttemptOutcome, Task


@runtime_checkable
class Backend(Protocol):
    """Protocol implemented by every execution backend.

    Implementations report ordinary failures through a failed
    ``AttemptOutcome`` instead of raising, and always fill ``duration_ms``.
    """

    backend_id: str

    def execute(self, task: Task) -> AttemptOutcome:
        """Run one attempt of ``task`` and return its outcome."""

    def probe_availability(self) -> bool:
        """Return whether the backend can take work right now; never raises."""
