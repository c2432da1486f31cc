"""Exception hierarchy for dispatch failures that surface to callers."""

from __future__ import annotations


class OrpheusError(Exception):
    """Base class for errors raised by the dispatch engine and its collaborators."""


class PlanError(OrpheusError, ValueError):
    """Execution plan is structurally unusable (for example, no backends)."""


class EventSinkError(OrpheusError):
    """The event sink could not persist or read events."""


class InvalidTaskTransition(OrpheusError):
    """Task status change would move backwards or out of a terminal state."""

    def __init__(self, task_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from status={status_from} to status={status_to}.",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class OrchestratorNotReady(OrpheusError):
    """No backend is registered, so nothing can be dispatched."""
