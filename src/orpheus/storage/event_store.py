"""Event sink implementations: SQLite-backed audit log and in-process log."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from orpheus.orchestrator.errors import EventSinkError
from orpheus.orchestrator.models import Event, EventDraft, EventFilter, EventKind
from orpheus.storage.alembic_runner import upgrade_head
from orpheus.storage.base import EventSink
from orpheus.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from orpheus.storage.sqlmodel_models import DispatchEvent


class SqliteEventStore:
    """Durable event log backed by SQLModel + SQLite."""

    thread_safe = True

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._write_lock = threading.Lock()

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise EventSinkError(
                f"Cannot migrate event store at {self.db_path}: {error}",
            ) from error

    def append(self, draft: EventDraft) -> str:
        """Persist one event and return its id."""

        event_id = str(uuid4())
        payload_json = (
            json.dumps(dict(draft.payload), ensure_ascii=False, sort_keys=True, default=str)
            if draft.payload
            else None
        )
        with self._write_lock:
            try:
                with Session(self.engine) as session:
                    session.add(
                        DispatchEvent(
                            event_id=event_id,
                            kind=draft.kind.value,
                            task_id=draft.task_id,
                            backend_id=draft.backend_id,
                            payload_json=payload_json,
                            created_at=to_db_datetime(utc_now()),
                        ),
                    )
                    session.commit()
            except SQLAlchemyError as error:
                raise EventSinkError(
                    f"Cannot append {draft.kind.value} event for task {draft.task_id}: {error}",
                ) from error
        return event_id

    def query(self, event_filter: EventFilter | None = None) -> list[Event]:
        """Return matching events ordered by timestamp ascending."""

        event_filter = event_filter or EventFilter()
        statement = select(DispatchEvent)
        if event_filter.kind is not None:
            statement = statement.where(DispatchEvent.kind == event_filter.kind.value)
        if event_filter.task_id is not None:
            statement = statement.where(DispatchEvent.task_id == event_filter.task_id)
        if event_filter.backend_id is not None:
            statement = statement.where(DispatchEvent.backend_id == event_filter.backend_id)
        statement = statement.order_by(
            col(DispatchEvent.created_at).asc(),
            col(DispatchEvent.seq).asc(),
        )
        return self._fetch(statement)

    def query_by_task(self, task_id: str) -> list[Event]:
        """Return one task's events ordered by timestamp ascending."""

        return self.query(EventFilter(task_id=task_id))

    def recent(self, limit: int = 10) -> list[Event]:
        """Return the latest ``limit`` events, oldest first."""

        statement = (
            select(DispatchEvent)
            .order_by(col(DispatchEvent.created_at).desc(), col(DispatchEvent.seq).desc())
            .limit(limit)
        )
        return list(reversed(self._fetch(statement)))

    def count(self) -> int:
        """Total number of stored events."""

        try:
            with Session(self.engine) as session:
                return int(session.exec(select(func.count()).select_from(DispatchEvent)).one())
        except SQLAlchemyError as error:
            raise EventSinkError(f"Cannot count events: {error}") from error

    def clear(self) -> None:
        """Delete every stored event."""

        with self._write_lock:
            try:
                with Session(self.engine) as session:
                    session.exec(sa_delete(DispatchEvent))  # type: ignore[call-overload]
                    session.commit()
            except SQLAlchemyError as error:
                raise EventSinkError(f"Cannot clear event store: {error}") from error

    def __enter__(self) -> SqliteEventStore:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _fetch(self, statement: Any) -> list[Event]:
        try:
            with Session(self.engine) as session:
                rows = session.exec(statement).all()
        except SQLAlchemyError as error:
            raise EventSinkError(f"Cannot query events: {error}") from error
        return [_to_event(row) for row in rows]


class InMemoryEventStore:
    """Process-local event log; same contract as the SQLite store, no durability."""

    thread_safe = True

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = threading.Lock()

    def append(self, draft: EventDraft) -> str:
        event = Event(
            event_id=str(uuid4()),
            kind=draft.kind,
            timestamp=utc_now(),
            task_id=draft.task_id,
            backend_id=draft.backend_id,
            payload=MappingProxyType(dict(draft.payload)),
        )
        with self._lock:
            self._events.append(event)
        return event.event_id

    def query(self, event_filter: EventFilter | None = None) -> list[Event]:
        event_filter = event_filter or EventFilter()
        with self._lock:
            snapshot = list(self._events)
        # sorted() is stable, so equal timestamps keep append order
        return sorted(
            (event for event in snapshot if event_filter.matches(event)),
            key=lambda event: event.timestamp,
        )

    def query_by_task(self, task_id: str) -> list[Event]:
        return self.query(EventFilter(task_id=task_id))

    def recent(self, limit: int = 10) -> list[Event]:
        events = self.query()
        return events[-limit:] if limit > 0 else []

    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class SerializedEventSink:
    """Wrap a sink that is not safe for concurrent writers behind one lock."""

    thread_safe = True

    def __init__(self, inner: EventSink) -> None:
        self.inner = inner
        self._lock = threading.Lock()

    def append(self, draft: EventDraft) -> str:
        with self._lock:
            return self.inner.append(draft)

    def query(self, event_filter: EventFilter | None = None) -> list[Event]:
        with self._lock:
            return self.inner.query(event_filter)

    def query_by_task(self, task_id: str) -> list[Event]:
        with self._lock:
            return self.inner.query_by_task(task_id)

    def clear(self) -> None:
        with self._lock:
            self.inner.clear()


def _to_event(row: DispatchEvent) -> Event:
    payload: dict[str, Any] = {}
    if row.payload_json:
        parsed = json.loads(row.payload_json)
        if isinstance(parsed, dict):
            payload = parsed
    return Event(
        event_id=row.event_id,
        kind=EventKind(row.kind),
        timestamp=to_utc_aware_datetime(row.created_at),
        task_id=row.task_id,
        backend_id=row.backend_id,
        payload=MappingProxyType(payload),
    )
