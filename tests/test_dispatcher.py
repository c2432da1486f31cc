from __future__ import annotations

import os
import subprocess
import sys
import textwrap
import time
from pathlib import Path

import allure
import pytest

from orpheus.orchestrator.dispatcher import Dispatcher
from orpheus.orchestrator.errors import EventSinkError, InvalidTaskTransition, PlanError
from orpheus.orchestrator.models import (
    ALL_BACKENDS_FAILED,
    AttemptOutcome,
    EventFilter,
    EventKind,
    ExecutionPlan,
    Task,
    TaskStatus,
    Usage,
)
from orpheus.orchestrator.registry import BackendRegistry
from orpheus.storage.event_store import InMemoryEventStore

pytestmark = [
    allure.epic("Dispatch Engine"),
    allure.feature("Retries, Fallback, Audit Events"),
]


def _dispatcher(
    backends,
    sink=None,
    sleep=None,
    **kwargs,
) -> tuple[Dispatcher, InMemoryEventStore]:
    sink = sink if sink is not None else InMemoryEventStore()
    dispatcher = Dispatcher(
        registry=BackendRegistry(list(backends)),
        sink=sink,
        sleep=sleep or (lambda _seconds: None),
        **kwargs,
    )
    return dispatcher, sink


def _trace(sink: InMemoryEventStore, task_id: str) -> list[tuple]:
    trace = []
    for event in sink.query_by_task(task_id):
        if event.kind in {EventKind.BACKEND_INVOKED, EventKind.BACKEND_RESPONDED}:
            row = (event.kind.value, event.backend_id, event.payload["attempt"])
            if event.kind is EventKind.BACKEND_RESPONDED:
                row = (*row, event.payload["success"])
            trace.append(row)
        else:
            trace.append((event.kind.value,))
    return trace


def test_fallback_after_exhausting_first_backend(scripted_backend, fake_sleep, recorded_sleeps):
    backend_a = scripted_backend("A", [False])
    backend_b = scripted_backend("B", [True])
    dispatcher, sink = _dispatcher([backend_a, backend_b], sleep=fake_sleep)
    task = Task(prompt="hello")

    result = dispatcher.dispatch(
        task,
        ExecutionPlan(backends=("A", "B"), retry_attempts=2, retry_delay_seconds=0.1),
    )

    assert result.attempts == 3
    assert result.success
    assert result.outcome.backend_id == "B"
    assert result.task.status is TaskStatus.COMPLETED
    assert _trace(sink, task.id) == [
        ("task-started",),
        ("backend-invoked", "A", 1),
        ("backend-responded", "A", 1, False),
        ("backend-invoked", "A", 2),
        ("backend-responded", "A", 2, False),
        ("backend-invoked", "B", 1),
        ("backend-responded", "B", 1, True),
        ("task-completed",),
    ]
    # linear backoff between A's tries, none after its last try or between backends
    assert recorded_sleeps == [pytest.approx(0.1)]


def test_single_unavailable_backend_fails_without_attempts(scripted_backend):
    backend_a = scripted_backend("A", [True], available=False)
    dispatcher, sink = _dispatcher([backend_a])
    task = Task(prompt="hello")

    result = dispatcher.dispatch(task, ExecutionPlan(backends=("A",), retry_attempts=1))

    assert result.attempts == 0
    assert not result.success
    assert result.outcome.error == ALL_BACKENDS_FAILED
    assert result.outcome.duration_ms == 0
    assert result.task.status is TaskStatus.FAILED
    assert _trace(sink, task.id) == [("task-started",), ("task-failed",)]
    assert backend_a.calls == []


@pytest.mark.parametrize("retries", [1, 2, 4])
def test_all_failing_attempts_count_only_usable_backends(scripted_backend, retries):
    backends = [
        scripted_backend("A", [False]),
        scripted_backend("B", [False], available=False),
        scripted_backend("C", [False]),
    ]
    dispatcher, sink = _dispatcher(backends)
    task = Task(prompt="hello")

    result = dispatcher.dispatch(
        task,
        ExecutionPlan(backends=("A", "missing", "B", "C"), retry_attempts=retries),
    )

    assert result.attempts == 2 * retries
    assert not result.success
    assert result.outcome.error == "C failed"
    invoked = sink.query(EventFilter(kind=EventKind.BACKEND_INVOKED, task_id=task.id))
    assert {event.backend_id for event in invoked} == {"A", "C"}
    assert len(invoked) == 2 * retries


@pytest.mark.parametrize(("position", "try_number"), [(1, 1), (2, 3), (3, 2)])
def test_attempts_when_kth_backend_succeeds_on_jth_try(scripted_backend, position, try_number):
    retries = 3
    ids = ["A", "B", "C"]
    backends = []
    for index, backend_id in enumerate(ids, start=1):
        if index < position:
            backends.append(scripted_backend(backend_id, [False]))
        elif index == position:
            backends.append(scripted_backend(backend_id, [False] * (try_number - 1) + [True]))
        else:
            backends.append(scripted_backend(backend_id, [True]))
    dispatcher, _sink = _dispatcher(backends)

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=tuple(ids), retry_attempts=retries, retry_delay_seconds=0),
    )

    assert result.attempts == (position - 1) * retries + try_number
    assert result.outcome.backend_id == ids[position - 1]
    assert all(not backend.calls for backend in backends[position:])


def test_event_sequence_pairs_every_invocation(scripted_backend):
    backends = [
        scripted_backend("A", [RuntimeError("boom"), False]),
        scripted_backend("B", [False, True]),
    ]
    dispatcher, sink = _dispatcher(backends)
    task = Task(prompt="hello")

    dispatcher.dispatch(task, ExecutionPlan(backends=("A", "B"), retry_attempts=2))

    events = sink.query_by_task(task.id)
    kinds = [event.kind for event in events]
    assert kinds[0] is EventKind.TASK_STARTED
    assert kinds[-1] is EventKind.TASK_COMPLETED
    assert sum(kind in {EventKind.TASK_COMPLETED, EventKind.TASK_FAILED} for kind in kinds) == 1
    for index, event in enumerate(events):
        if event.kind is EventKind.BACKEND_INVOKED:
            follower = events[index + 1]
            assert follower.kind is EventKind.BACKEND_RESPONDED
            assert follower.backend_id == event.backend_id
            assert follower.payload["attempt"] == event.payload["attempt"]


def test_empty_plan_raises_before_any_event():
    dispatcher, sink = _dispatcher([])
    task = Task(prompt="hello")

    with pytest.raises(PlanError, match="no backends"):
        dispatcher.dispatch(task, ExecutionPlan(backends=()))

    assert sink.query() == []
    assert task.status is TaskStatus.PENDING


@pytest.mark.parametrize("retries", [1, 5])
def test_unavailable_backend_is_never_invoked(scripted_backend, retries):
    backend = scripted_backend("A", [True], available=False)
    dispatcher, sink = _dispatcher([backend])
    task = Task(prompt="hello")

    dispatcher.dispatch(task, ExecutionPlan(backends=("A", "A"), retry_attempts=retries))

    assert sink.query(EventFilter(kind=EventKind.BACKEND_INVOKED)) == []
    assert backend.calls == []


def test_raising_probe_counts_as_unavailable(scripted_backend):
    flaky = scripted_backend("A", [True], available=ConnectionError("probe down"))
    healthy = scripted_backend("B", [True])
    dispatcher, _sink = _dispatcher([flaky, healthy])

    result = dispatcher.dispatch(Task(prompt="hello"), ExecutionPlan(backends=("A", "B")))

    assert result.outcome.backend_id == "B"
    assert result.attempts == 1
    assert flaky.calls == []


def test_raising_execute_becomes_failed_attempt(scripted_backend):
    backend = scripted_backend("A", [RuntimeError("socket closed")])
    dispatcher, sink = _dispatcher([backend])
    task = Task(prompt="hello")

    result = dispatcher.dispatch(task, ExecutionPlan(backends=("A",), retry_attempts=2))

    assert not result.success
    assert result.attempts == 2
    assert result.outcome.error == "socket closed"
    responded = sink.query(EventFilter(kind=EventKind.BACKEND_RESPONDED, task_id=task.id))
    assert [event.payload["raised"] for event in responded] == [True, True]
    assert [event.payload["error"] for event in responded] == ["socket closed", "socket closed"]


def test_exception_without_message_uses_type_name(scripted_backend):
    dispatcher, _sink = _dispatcher([scripted_backend("A", [KeyError()])])

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A",), retry_attempts=1),
    )

    assert result.outcome.error == "KeyError"


def test_non_outcome_result_is_a_failed_attempt(scripted_backend):
    class WrongType(scripted_backend):
        def execute(self, task):
            return "plain string"

    dispatcher, _sink = _dispatcher([WrongType("A")])

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A",), retry_attempts=1),
    )

    assert not result.success
    assert "expected AttemptOutcome" in (result.outcome.error or "")


def test_backoff_is_linear_per_backend(scripted_backend, fake_sleep, recorded_sleeps):
    backends = [scripted_backend("A", [False]), scripted_backend("B", [False])]
    dispatcher, _sink = _dispatcher(backends, sleep=fake_sleep)

    dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A", "B"), retry_attempts=3, retry_delay_seconds=0.5),
    )

    assert recorded_sleeps == [0.5, 1.0, 0.5, 1.0]


def test_zero_delay_never_sleeps(scripted_backend, fake_sleep, recorded_sleeps):
    dispatcher, _sink = _dispatcher([scripted_backend("A", [False])], sleep=fake_sleep)

    dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A",), retry_attempts=3, retry_delay_seconds=0),
    )

    assert recorded_sleeps == []


def test_failure_outcome_is_attributed_to_preferred_backend(scripted_backend):
    backends = [scripted_backend("A", [False]), scripted_backend("B", [False])]
    dispatcher, sink = _dispatcher(backends)
    task = Task(prompt="hello", preferred_backend="B")

    result = dispatcher.dispatch(task, ExecutionPlan(backends=("A", "B"), retry_attempts=1))

    assert result.outcome.backend_id == "B"
    assert result.outcome.error == "B failed"
    failed = sink.query(EventFilter(kind=EventKind.TASK_FAILED, task_id=task.id))
    assert failed[0].payload == {"error": "B failed", "attempts": 2}


def test_failure_outcome_defaults_to_first_plan_entry(scripted_backend):
    backends = [scripted_backend("A", [False]), scripted_backend("B", [False])]
    dispatcher, _sink = _dispatcher(backends)

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A", "B"), retry_attempts=1),
    )

    assert result.outcome.backend_id == "A"
    assert result.outcome.duration_ms == 0


def test_duplicate_backend_entries_are_tried_again(scripted_backend):
    backend = scripted_backend("A", [False, False, True])
    dispatcher, _sink = _dispatcher([backend])

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A", "A"), retry_attempts=2),
    )

    assert result.success
    assert result.attempts == 3
    assert backend.probes == 2


def test_task_started_and_completed_payloads(scripted_backend):
    dispatcher, sink = _dispatcher([scripted_backend("A", [True])])
    task = Task(prompt="x" * 250)

    dispatcher.dispatch(task, ExecutionPlan(backends=("A",), retry_attempts=2))

    started, *_rest, completed = sink.query_by_task(task.id)
    assert started.payload["prompt"] == "x" * 100
    assert started.payload["backends"] == ["A"]
    assert started.payload["retry_attempts"] == 2
    assert completed.payload == {"backend": "A", "attempts": 1}
    assert all(event.task_id == task.id for event in sink.query())


def test_redispatching_terminal_task_raises_before_events(scripted_backend):
    dispatcher, sink = _dispatcher([scripted_backend("A", [True])])
    task = Task(prompt="hello")
    dispatcher.dispatch(task, ExecutionPlan(backends=("A",)))
    before = len(sink.query())

    with pytest.raises(InvalidTaskTransition):
        dispatcher.dispatch(task, ExecutionPlan(backends=("A",)))

    assert len(sink.query()) == before


def test_sink_failure_is_raised_as_event_sink_error(scripted_backend):
    class BrokenSink(InMemoryEventStore):
        def append(self, draft):
            if draft.kind is EventKind.BACKEND_INVOKED:
                raise OSError("disk full")
            return super().append(draft)

    dispatcher, _sink = _dispatcher([scripted_backend("A", [True])], sink=BrokenSink())

    with pytest.raises(EventSinkError, match="disk full"):
        dispatcher.dispatch(Task(prompt="hello"), ExecutionPlan(backends=("A",)))


def test_call_deadline_turns_slow_call_into_failure(scripted_backend):
    slow = scripted_backend("slow", [True], latency_seconds=0.5)
    fast = scripted_backend("fast", [True])
    dispatcher, sink = _dispatcher([slow, fast], call_timeout_seconds=0.05)
    task = Task(prompt="hello")

    result = dispatcher.dispatch(
        task,
        ExecutionPlan(backends=("slow", "fast"), retry_attempts=1),
    )

    assert result.outcome.backend_id == "fast"
    assert result.attempts == 2
    responded = sink.query(EventFilter(kind=EventKind.BACKEND_RESPONDED, backend_id="slow"))
    assert "timed out" in responded[0].payload["error"]


def test_abandoned_call_does_not_block_process_exit(tmp_path: Path):
    script = tmp_path / "hung_dispatch.py"
    script.write_text(
        textwrap.dedent(
            """
            import time

            from orpheus.orchestrator.dispatcher import Dispatcher
            from orpheus.orchestrator.models import ExecutionPlan, Task
            from orpheus.orchestrator.registry import BackendRegistry
            from orpheus.storage.event_store import InMemoryEventStore


            class HungBackend:
                backend_id = "hung"

                def execute(self, task):
                    time.sleep(30)

                def probe_availability(self):
                    return True


            dispatcher = Dispatcher(
                registry=BackendRegistry([HungBackend()]),
                sink=InMemoryEventStore(),
                call_timeout_seconds=0.1,
            )
            result = dispatcher.dispatch(
                Task(prompt="hello"),
                ExecutionPlan(backends=("hung",), retry_attempts=1),
            )
            print(result.outcome.error)
            """,
        ),
        encoding="utf-8",
    )
    src_dir = Path(__file__).resolve().parents[1] / "src"
    python_path = os.pathsep.join([str(src_dir), os.environ.get("PYTHONPATH", "")])
    env = {**os.environ, "PYTHONPATH": python_path}

    started = time.monotonic()
    completed = subprocess.run(
        [sys.executable, str(script)],
        capture_output=True,
        text=True,
        env=env,
        timeout=60,
        check=False,
    )
    elapsed = time.monotonic() - started

    assert completed.returncode == 0, completed.stderr
    assert "timed out after 0.1s" in completed.stdout
    assert elapsed < 20


def test_backend_responded_carries_duration_and_usage(scripted_backend):
    answered = AttemptOutcome.succeeded(
        backend_id="B",
        content="ok",
        duration_ms=42,
        usage=Usage(prompt_tokens=3, completion_tokens=4, total_tokens=7),
    )
    dispatcher, sink = _dispatcher(
        [scripted_backend("A", [False]), scripted_backend("B", [answered])],
    )
    task = Task(prompt="hello")

    dispatcher.dispatch(task, ExecutionPlan(backends=("A", "B"), retry_attempts=1))

    failed, succeeded = sink.query(EventFilter(task_id=task.id, kind=EventKind.BACKEND_RESPONDED))
    assert failed.payload["success"] is False
    assert failed.payload["duration_ms"] == 5
    assert failed.payload["usage"] is None
    assert succeeded.payload["success"] is True
    assert succeeded.payload["duration_ms"] == 42
    assert succeeded.payload["usage"] == {
        "prompt_tokens": 3,
        "completion_tokens": 4,
        "total_tokens": 7,
    }


def test_backend_timeout_error_is_not_reported_as_deadline(scripted_backend):
    backend = scripted_backend("A", [TimeoutError("upstream read timeout")])
    dispatcher, _sink = _dispatcher([backend], call_timeout_seconds=5)

    result = dispatcher.dispatch(
        Task(prompt="hello"),
        ExecutionPlan(backends=("A",), retry_attempts=1),
    )

    assert result.outcome.error == "upstream read timeout"


def test_plan_rejects_invalid_retry_policy():
    with pytest.raises(PlanError):
        ExecutionPlan(backends=("A",), retry_attempts=0)
    with pytest.raises(ValueError, match="retry_delay_seconds"):
        ExecutionPlan(backends=("A",), retry_delay_seconds=-1)


def test_dispatcher_rejects_non_positive_call_timeout():
    with pytest.raises(ValueError, match="call_timeout_seconds"):
        Dispatcher(registry=BackendRegistry(), sink=InMemoryEventStore(), call_timeout_seconds=0)
