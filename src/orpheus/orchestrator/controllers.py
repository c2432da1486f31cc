"""Controllers for dispatch CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from orpheus.config import Settings
from orpheus.orchestrator.backend import EchoBackend, build_backends
from orpheus.orchestrator.model_catalog import CATALOG_VERIFIED_AT, FRONTIER_MODELS
from orpheus.orchestrator.models import BatchMode, Event, EventFilter, EventKind
from orpheus.orchestrator.planner import SUPPORTED_BACKENDS
from orpheus.orchestrator.registry import BackendRegistry
from orpheus.orchestrator.services import ExecutionReport, OrchestratorService
from orpheus.storage.event_store import InMemoryEventStore, SqliteEventStore

CONTENT_PREVIEW_CHARS = 2_000


@dataclass(slots=True)
class RunCommand:
    """CLI input for planning and dispatching one prompt."""

    db_path: Path | None
    prompt: str
    output_json: bool = False
    parallel: bool | None = None
    echo: bool = False


@dataclass(slots=True)
class BackendsCommand:
    """CLI input for backend availability checks."""

    echo: bool = False


@dataclass(slots=True)
class HistoryCommand:
    """CLI input for one task's event history."""

    db_path: Path | None
    task_id: str
    output_json: bool = False


@dataclass(slots=True)
class EventsCommand:
    """CLI input for filtered event listing."""

    db_path: Path | None
    kind: str | None
    task_id: str | None
    backend_id: str | None
    limit: int
    output_json: bool = False


@dataclass(slots=True)
class ClearCommand:
    """CLI input for wiping the event log."""

    db_path: Path | None


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus whether the command should exit successfully."""

    lines: list[str]
    success: bool = True


class DispatchCliController:
    """Coordinates run, inspection and maintenance CLI operations."""

    def run(self, command: RunCommand) -> CommandResult:
        settings = load_settings(command.db_path)
        mode = None
        if command.parallel is not None:
            mode = BatchMode.CONCURRENT if command.parallel else BatchMode.SEQUENTIAL
        with _event_store(settings) as store, _registry(settings, echo=command.echo) as registry:
            service = OrchestratorService(settings=settings, sink=store, registry=registry)
            report = service.execute(command.prompt, mode=mode)

        if command.output_json:
            return CommandResult(
                lines=[json.dumps(report.to_payload(), ensure_ascii=False, indent=2)],
                success=report.success,
            )
        return CommandResult(lines=_render_report(report), success=report.success)

    def backends(self, command: BackendsCommand) -> CommandResult:
        """Probe every configured backend."""

        settings = load_settings(None)
        with _registry(settings, echo=command.echo) as registry:
            service = OrchestratorService(
                settings=settings,
                sink=InMemoryEventStore(),
                registry=registry,
            )
            if not service.registered_backends():
                return CommandResult(
                    lines=[
                        "Backends: none configured",
                        "Set ANTHROPIC_API_KEY, OPENAI_API_KEY or GOOGLE_AI_API_KEY.",
                    ],
                    success=False,
                )
            availability = service.check_backends()
        lines = [f"Backends: {len(availability)}"]
        for backend_id, available in availability.items():
            lines.append(f"  {backend_id}: {'available' if available else 'unavailable'}")
        return CommandResult(lines=lines, success=all(availability.values()))

    def history(self, command: HistoryCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with _event_store(settings) as store:
            events = store.query_by_task(command.task_id)
        if command.output_json:
            return [json.dumps([event.to_payload() for event in events], indent=2)]
        if not events:
            return [f"No events for task: {command.task_id}"]
        return [f"Task: {command.task_id}", f"Events: {len(events)}", *_render_events(events)]

    def events(self, command: EventsCommand) -> list[str]:
        settings = load_settings(command.db_path)
        event_filter = EventFilter(
            kind=_parse_kind(command.kind),
            task_id=command.task_id,
            backend_id=command.backend_id,
        )
        with _event_store(settings) as store:
            events = store.query(event_filter)
        events = events[-command.limit :] if command.limit > 0 else events
        if command.output_json:
            return [json.dumps([event.to_payload() for event in events], indent=2)]
        return [f"Events: {len(events)}", *_render_events(events)]

    def clear(self, command: ClearCommand) -> list[str]:
        settings = load_settings(command.db_path)
        with _event_store(settings) as store:
            removed = store.count()
            store.clear()
        return [f"Event log cleared: removed={removed} db={settings.db_path}"]

    def models(self) -> list[str]:
        lines = [f"Model catalog (verified {CATALOG_VERIFIED_AT}):"]
        for provider, models in FRONTIER_MODELS.items():
            lines.append(f"  {provider}:")
            for use_case, model in models.items():
                lines.append(f"    {use_case}: {model}")
        return lines

    def config(self, db_path: Path | None) -> list[str]:
        settings = load_settings(db_path)
        return [json.dumps(settings.redacted(), indent=2, sort_keys=True)]


def load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _event_store(settings: Settings) -> Iterator[SqliteEventStore]:
    store = SqliteEventStore(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@contextmanager
def _registry(settings: Settings, *, echo: bool) -> Iterator[BackendRegistry]:
    if echo:
        yield BackendRegistry([EchoBackend(backend_id) for backend_id in SUPPORTED_BACKENDS])
        return
    backends = build_backends(settings.providers)
    try:
        yield BackendRegistry(backends)
    finally:
        for backend in backends:
            close = getattr(backend, "close", None)
            if callable(close):
                close()


def _parse_kind(value: str | None) -> EventKind | None:
    if value is None:
        return None
    try:
        return EventKind(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(kind.value for kind in EventKind)
        raise ValueError(f"Unsupported event kind: {value!r}. Use one of: {allowed}") from error


def _render_report(report: ExecutionReport) -> list[str]:
    lines = [
        f"Plan: {report.plan.id}",
        f"Strategy: {report.plan.strategy}",
    ]
    for result in report.results:
        outcome = result.outcome
        lines.append(
            f"Task {result.task.id}: status={result.task.status.value} "
            f"backend={outcome.backend_id} attempts={result.attempts} "
            f"duration_ms={outcome.duration_ms}",
        )
        if outcome.usage is not None:
            lines.append(
                f"  usage prompt={outcome.usage.prompt_tokens} "
                f"completion={outcome.usage.completion_tokens} "
                f"total={outcome.usage.total_tokens}",
            )
        if outcome.success:
            lines.append((outcome.content or "")[:CONTENT_PREVIEW_CHARS])
        else:
            lines.append(f"  error: {outcome.error}")
    return lines


def _render_events(events: list[Event]) -> list[str]:
    lines: list[str] = []
    for event in events:
        payload = json.dumps(dict(event.payload), ensure_ascii=False, sort_keys=True)
        lines.append(
            f"  {event.timestamp.isoformat()} {event.kind.value} "
            f"task={event.task_id} backend={event.backend_id or '-'} {payload}",
        )
    return lines
