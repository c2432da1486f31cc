"""Domain models for task dispatch, attempt outcomes and audit events."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from orpheus.orchestrator.errors import InvalidTaskTransition, PlanError
from orpheus.storage.common import utc_now

ALL_BACKENDS_FAILED = "All backends failed"


class TaskStatus(str, Enum):
    """Task lifecycle states; transitions only move forward."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class TaskPriority(str, Enum):
    """Ordered task priority; compare with ``rank``."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    TaskPriority.LOW: 0,
    TaskPriority.NORMAL: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


@dataclass(slots=True)
class Task:
    """Unit of work handed to the dispatcher.

    The dispatcher only touches ``status`` and ``updated_at``; everything else
    is owned by whoever built the task (usually the planner).
    """

    prompt: str
    id: str = field(default_factory=lambda: str(uuid4()))
    system_prompt: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    preferred_backend: str | None = None
    fallback_backends: tuple[str, ...] = ()
    parent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def transition(self, status: TaskStatus) -> None:
        """Move to ``status`` or raise if the move is not forward along the lifecycle."""

        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTaskTransition(self.id, self.status.value, status.value)
        self.status = status
        self.updated_at = utc_now()

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "system_prompt": self.system_prompt,
            "priority": self.priority.value,
            "status": self.status.value,
            "preferred_backend": self.preferred_backend,
            "fallback_backends": list(self.fallback_backends),
            "parent_id": self.parent_id,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class Usage:
    """Provider-reported token accounting; opaque to the dispatcher."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def to_payload(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True, slots=True)
class AttemptOutcome:
    """Result of one backend call.

    ``content`` is set only on success and ``error`` only on failure.
    """

    backend_id: str
    success: bool
    duration_ms: int
    content: str | None = None
    error: str | None = None
    usage: Usage | None = None

    def __post_init__(self) -> None:
        if self.success and (self.content is None or self.error is not None):
            raise ValueError("Successful outcome requires content and no error.")
        if not self.success and (self.error is None or self.content is not None):
            raise ValueError("Failed outcome requires an error and no content.")
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")

    @classmethod
    def succeeded(
        cls,
        *,
        backend_id: str,
        content: str,
        duration_ms: int,
        usage: Usage | None = None,
    ) -> AttemptOutcome:
        return cls(
            backend_id=backend_id,
            success=True,
            content=content,
            duration_ms=duration_ms,
            usage=usage,
        )

    @classmethod
    def failed(cls, *, backend_id: str, error: str, duration_ms: int) -> AttemptOutcome:
        return cls(
            backend_id=backend_id,
            success=False,
            error=error or "Unknown backend error",
            duration_ms=duration_ms,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "backend_id": self.backend_id,
            "success": self.success,
            "content": self.content,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "usage": self.usage.to_payload() if self.usage is not None else None,
        }


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Ordered fallback list of backend ids plus retry policy for one task.

    An empty ``backends`` tuple is accepted here and rejected by the dispatcher,
    so the failure surfaces as a dispatch-time plan error.
    """

    backends: tuple[str, ...]
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.retry_attempts < 1:
            raise PlanError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.retry_delay_seconds < 0:
            raise PlanError(
                f"retry_delay_seconds must be >= 0, got {self.retry_delay_seconds}",
            )

    def backoff_delay(self, attempt: int) -> float:
        """Linear backoff before the try that follows ``attempt``."""

        return self.retry_delay_seconds * attempt


@dataclass(slots=True)
class DispatchResult:
    """Terminal answer for one task."""

    task: Task
    outcome: AttemptOutcome
    attempts: int

    @property
    def success(self) -> bool:
        return self.outcome.success

    def to_payload(self) -> dict[str, Any]:
        return {
            "task": self.task.to_payload(),
            "outcome": self.outcome.to_payload(),
            "attempts": self.attempts,
        }


class EventKind(str, Enum):
    """Closed set of audit event kinds written during a dispatch."""

    TASK_STARTED = "task-started"
    BACKEND_INVOKED = "backend-invoked"
    BACKEND_RESPONDED = "backend-responded"
    TASK_COMPLETED = "task-completed"
    TASK_FAILED = "task-failed"


@dataclass(frozen=True, slots=True)
class EventDraft:
    """Event as produced by the dispatcher, before the sink assigns id and time."""

    kind: EventKind
    task_id: str
    backend_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Event:
    """Persisted audit event; stores hand out `payload` as a read-only mapping."""

    event_id: str
    kind: EventKind
    timestamp: datetime
    task_id: str
    backend_id: str | None
    payload: Mapping[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "task_id": self.task_id,
            "backend_id": self.backend_id,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True, slots=True)
class EventFilter:
    """Optional equality filters for event queries."""

    kind: EventKind | None = None
    task_id: str | None = None
    backend_id: str | None = None

    def matches(self, event: Event) -> bool:
        if self.kind is not None and event.kind != self.kind:
            return False
        if self.task_id is not None and event.task_id != self.task_id:
            return False
        return self.backend_id is None or event.backend_id == self.backend_id


class BatchMode(str, Enum):
    """How the batch coordinator schedules independent dispatches."""

    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"
