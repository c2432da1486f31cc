"""Batch coordinator: runs independent dispatches sequentially or on a thread pool."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

from orpheus.orchestrator.dispatcher import Dispatcher
from orpheus.orchestrator.models import BatchMode, DispatchResult, ExecutionPlan, Task
from orpheus.storage.event_store import SerializedEventSink

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Fan the dispatcher out over many tasks, returning results in input order.

    There is no batch-level retry: each result already reflects the
    dispatcher's own retry and fallback handling.
    """

    def __init__(
        self,
        *,
        dispatcher: Dispatcher,
        plan_for: Callable[[Task], ExecutionPlan],
        max_workers: int | None = None,
    ) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.dispatcher = dispatcher
        self.plan_for = plan_for
        self.max_workers = max_workers

    def dispatch_all(
        self,
        tasks: Sequence[Task],
        mode: BatchMode = BatchMode.SEQUENTIAL,
    ) -> list[DispatchResult]:
        """Dispatch every task and return one result per task, in input order."""

        if not tasks:
            return []
        jobs = [(task, self.plan_for(task)) for task in tasks]
        logger.info("Dispatching batch of %d task(s) in %s mode", len(jobs), mode.value)

        if mode is BatchMode.SEQUENTIAL:
            return [self.dispatcher.dispatch(task, plan) for task, plan in jobs]

        dispatcher = self._concurrent_dispatcher()
        workers = self.max_workers or len(jobs)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="orpheus-batch") as pool:
            futures = [pool.submit(dispatcher.dispatch, task, plan) for task, plan in jobs]
            return [future.result() for future in futures]

    def _concurrent_dispatcher(self) -> Dispatcher:
        sink = self.dispatcher.sink
        if getattr(sink, "thread_safe", False):
            return self.dispatcher
        logger.debug("Event sink %s is not thread safe; serializing appends", type(sink).__name__)
        return self.dispatcher.with_sink(SerializedEventSink(sink))
