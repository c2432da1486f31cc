"""Prompt routing heuristics and execution-plan resolution."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from orpheus.config import PlannerSettings, RetrySettings
from orpheus.orchestrator.models import ExecutionPlan, Task, TaskPriority
from orpheus.storage.common import utc_now

SUPPORTED_BACKENDS = ("sonnet", "codex", "gemini")

_CODE_PATTERNS: tuple[str, ...] = (
    "code",
    "function",
    "class",
    "implement",
    "debug",
    "refactor",
    "typescript",
    "javascript",
    "python",
    "rust",
    "script",
    "api",
    "endpoint",
    "database",
    "sql",
    "query",
)
_RESEARCH_PATTERNS: tuple[str, ...] = (
    "research",
    "analyze image",
    "compare",
    "summarize document",
    "multimodal",
    "vision",
    "video",
    "search",
)


@dataclass(slots=True)
class RoutingDecision:
    """Backend recommendation for one prompt."""

    backend: str
    priority: TaskPriority
    strategy: str


@dataclass(slots=True)
class PromptPlan:
    """Tasks derived from one user prompt."""

    original_prompt: str
    tasks: list[Task]
    strategy: str
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_prompt": self.original_prompt,
            "strategy": self.strategy,
            "task_ids": [task.id for task in self.tasks],
            "created_at": self.created_at.isoformat(),
        }


class Planner:
    """Turn prompts into routed tasks.

    Routing is a keyword heuristic; the dispatcher never second-guesses it.
    """

    def __init__(self, settings: PlannerSettings | None = None) -> None:
        self.settings = settings or PlannerSettings()
        _validate_supported_backend(self.settings.default_backend)

    def create_plan(self, prompt: str) -> PromptPlan:
        """Analyze ``prompt`` and build a single-task plan."""

        if not prompt.strip():
            raise ValueError("Prompt must not be empty.")
        decision = route_prompt(prompt)
        task = self.create_task(
            prompt,
            preferred_backend=decision.backend,
            priority=decision.priority,
        )
        return PromptPlan(original_prompt=prompt, tasks=[task], strategy=decision.strategy)

    def create_task(  # noqa: PLR0913
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        preferred_backend: str | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        parent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        """Build a pending task with the default fallback order."""

        preferred = preferred_backend or self.settings.default_backend
        _validate_supported_backend(preferred)
        return Task(
            prompt=prompt,
            system_prompt=system_prompt,
            preferred_backend=preferred,
            fallback_backends=fallback_order(preferred),
            priority=priority,
            parent_id=parent_id,
            metadata=dict(metadata or {}),
        )


def route_prompt(prompt: str) -> RoutingDecision:
    """Pick a backend for ``prompt`` from keyword matches."""

    lower = prompt.lower()
    if _matches(lower, _CODE_PATTERNS):
        return RoutingDecision(
            backend="codex",
            priority=TaskPriority.NORMAL,
            strategy="Code generation task routed to Codex",
        )
    if _matches(lower, _RESEARCH_PATTERNS):
        return RoutingDecision(
            backend="gemini",
            priority=TaskPriority.NORMAL,
            strategy="Research/multimodal task routed to Gemini",
        )
    return RoutingDecision(
        backend="sonnet",
        priority=TaskPriority.NORMAL,
        strategy="General reasoning task routed to Sonnet",
    )


def fallback_order(preferred: str | None = None) -> tuple[str, ...]:
    """Preferred backend first, then the remaining supported backends."""

    if preferred is None:
        return SUPPORTED_BACKENDS
    return (preferred, *(backend for backend in SUPPORTED_BACKENDS if backend != preferred))


def resolve_backend_order(task: Task, registered: Iterable[str]) -> tuple[str, ...]:
    """Fallback list if present, else the preferred backend, else every registered one."""

    if task.fallback_backends:
        return tuple(task.fallback_backends)
    if task.preferred_backend:
        return (task.preferred_backend,)
    return tuple(registered)


def build_execution_plan(
    task: Task,
    *,
    retry: RetrySettings,
    registered: Iterable[str],
) -> ExecutionPlan:
    """Execution plan for ``task`` using the configured retry policy."""

    return ExecutionPlan(
        backends=resolve_backend_order(task, registered),
        retry_attempts=retry.attempts,
        retry_delay_seconds=retry.delay_seconds,
    )


def _matches(text: str, patterns: tuple[str, ...]) -> bool:
    return any(pattern in text for pattern in patterns)


def _validate_supported_backend(backend: str) -> None:
    if backend in SUPPORTED_BACKENDS:
        return
    raise ValueError(
        f"Unsupported backend: {backend!r}. Use one of {SUPPORTED_BACKENDS}.",
    )
