"""Event sink interface consumed by the dispatcher."""

from __future__ import annotations

from typing import Protocol

from orpheus.orchestrator.models import Event, EventDraft, EventFilter


class EventSink(Protocol):
    """Append-only audit log keyed by task and backend identity.

    ``append`` must be atomic per call. Sinks that are safe for concurrent
    writers advertise it with a truthy ``thread_safe`` attribute; others are
    serialized by the batch coordinator before running dispatches in parallel.
    """

    def append(self, draft: EventDraft) -> str:
        """Persist one event, assigning id and timestamp, and return the id."""

    def query(self, event_filter: EventFilter | None = None) -> list[Event]:
        """Return matching events ordered by timestamp ascending."""

    def query_by_task(self, task_id: str) -> list[Event]:
        """Return one task's events ordered by timestamp ascending."""

    def clear(self) -> None:
        """Delete every event. Operator/test action, never called by the dispatcher."""
