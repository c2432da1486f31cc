"""Dispatch engine: availability checks, retries with backoff, fallback and audit events."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from orpheus.orchestrator.backend.base import Backend
from orpheus.orchestrator.errors import EventSinkError, PlanError
from orpheus.orchestrator.models import (
    ALL_BACKENDS_FAILED,
    AttemptOutcome,
    DispatchResult,
    EventDraft,
    EventKind,
    ExecutionPlan,
    Task,
    TaskStatus,
)
from orpheus.storage.base import EventSink

logger = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 100


class Dispatcher:
    """Drives one task through its execution plan until success or exhaustion.

    Backend failures never escape ``dispatch``; they become retries, fallbacks
    and finally a failed ``DispatchResult``. Only an unusable plan
    (``PlanError``) or a broken sink (``EventSinkError``) is raised.
    """

    def __init__(
        self,
        *,
        registry: Mapping[str, Backend],
        sink: EventSink,
        call_timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if call_timeout_seconds is not None and call_timeout_seconds <= 0:
            raise ValueError(f"call_timeout_seconds must be > 0, got {call_timeout_seconds}")
        self.registry = registry
        self.sink = sink
        self.call_timeout_seconds = call_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    def with_sink(self, sink: EventSink) -> Dispatcher:
        """Return a dispatcher sharing this registry and policy but writing to ``sink``."""

        return Dispatcher(
            registry=self.registry,
            sink=sink,
            call_timeout_seconds=self.call_timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )

    def dispatch(self, task: Task, plan: ExecutionPlan) -> DispatchResult:
        """Run ``task`` against ``plan`` and return the terminal result."""

        if not plan.backends:
            raise PlanError(f"Execution plan for task {task.id} has no backends.")

        task.transition(TaskStatus.RUNNING)
        logger.info(
            "Dispatching task %s across %s (retries=%d)",
            task.id,
            ",".join(plan.backends),
            plan.retry_attempts,
        )
        self._emit(
            EventKind.TASK_STARTED,
            task=task,
            payload={
                "prompt": task.prompt[:PROMPT_PREVIEW_CHARS],
                "priority": task.priority.value,
                "backends": list(plan.backends),
                "retry_attempts": plan.retry_attempts,
            },
        )

        attempts = 0
        last_error: str | None = None
        for backend_id in plan.backends:
            backend = self.registry.get(backend_id)
            if backend is None:
                logger.warning("Backend %s not registered, skipping", backend_id)
                continue
            if not self._is_available(backend_id, backend):
                logger.warning("Backend %s not available, skipping", backend_id)
                continue

            for attempt in range(1, plan.retry_attempts + 1):
                attempts += 1
                self._emit(
                    EventKind.BACKEND_INVOKED,
                    task=task,
                    backend_id=backend_id,
                    payload={"attempt": attempt},
                )
                outcome, raised = self._call(backend_id, backend, task)
                self._emit(
                    EventKind.BACKEND_RESPONDED,
                    task=task,
                    backend_id=backend_id,
                    payload={
                        "attempt": attempt,
                        "success": outcome.success,
                        "duration_ms": outcome.duration_ms,
                        "usage": outcome.usage.to_payload() if outcome.usage else None,
                        "error": outcome.error,
                        "raised": raised,
                    },
                )

                if outcome.success:
                    task.transition(TaskStatus.COMPLETED)
                    self._emit(
                        EventKind.TASK_COMPLETED,
                        task=task,
                        payload={"backend": backend_id, "attempts": attempts},
                    )
                    logger.info(
                        "Task %s completed by %s after %d attempt(s)",
                        task.id,
                        backend_id,
                        attempts,
                    )
                    return DispatchResult(task=task, outcome=outcome, attempts=attempts)

                last_error = outcome.error
                logger.debug(
                    "Attempt %d/%d on %s failed for task %s: %s",
                    attempt,
                    plan.retry_attempts,
                    backend_id,
                    task.id,
                    last_error,
                )
                if attempt < plan.retry_attempts:
                    delay = plan.backoff_delay(attempt)
                    if delay > 0:
                        self._sleep(delay)

        task.transition(TaskStatus.FAILED)
        failure = AttemptOutcome.failed(
            backend_id=task.preferred_backend or plan.backends[0],
            error=last_error or ALL_BACKENDS_FAILED,
            duration_ms=0,
        )
        self._emit(
            EventKind.TASK_FAILED,
            task=task,
            payload={"error": failure.error, "attempts": attempts},
        )
        logger.warning(
            "Task %s failed after %d attempt(s): %s",
            task.id,
            attempts,
            failure.error,
        )
        return DispatchResult(task=task, outcome=failure, attempts=attempts)

    def _is_available(self, backend_id: str, backend: Backend) -> bool:
        try:
            return bool(backend.probe_availability())
        except Exception as error:  # noqa: BLE001
            logger.warning("Availability probe for %s raised: %s", backend_id, error)
            return False

    def _call(self, backend_id: str, backend: Backend, task: Task) -> tuple[AttemptOutcome, bool]:
        started = self._clock()
        try:
            outcome = self._execute(backend, task)
            if not isinstance(outcome, AttemptOutcome):
                raise TypeError(
                    f"Backend {backend_id} returned {type(outcome).__name__}, "
                    "expected AttemptOutcome",
                )
            return outcome, False
        except _DeadlineExceeded:
            return (
                AttemptOutcome.failed(
                    backend_id=backend_id,
                    error=f"Backend call timed out after {self.call_timeout_seconds}s",
                    duration_ms=self._elapsed_ms(started),
                ),
                True,
            )
        except Exception as error:  # noqa: BLE001
            logger.error("Backend %s raised during task %s: %s", backend_id, task.id, error)
            return (
                AttemptOutcome.failed(
                    backend_id=backend_id,
                    error=_describe_error(error),
                    duration_ms=self._elapsed_ms(started),
                ),
                True,
            )

    def _execute(self, backend: Backend, task: Task) -> AttemptOutcome:
        if self.call_timeout_seconds is None:
            return backend.execute(task)
        holder: dict[str, Any] = {}

        def target() -> None:
            try:
                holder["outcome"] = backend.execute(task)
            except BaseException as error:  # noqa: BLE001
                holder["error"] = error

        # daemon: an abandoned call must not block interpreter exit
        thread = threading.Thread(target=target, name="orpheus-call", daemon=True)
        thread.start()
        thread.join(self.call_timeout_seconds)
        if thread.is_alive():
            raise _DeadlineExceeded
        if "error" in holder:
            raise holder["error"]
        return holder["outcome"]

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    def _emit(
        self,
        kind: EventKind,
        *,
        task: Task,
        backend_id: str | None = None,
        payload: dict[str, Any],
    ) -> str:
        draft = EventDraft(kind=kind, task_id=task.id, backend_id=backend_id, payload=payload)
        try:
            return self.sink.append(draft)
        except EventSinkError:
            raise
        except Exception as error:
            raise EventSinkError(
                f"Event sink rejected {kind.value} for task {task.id}: {error}",
            ) from error


class _DeadlineExceeded(Exception):
    """Backend call outlived the per-call deadline."""


def _describe_error(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__
