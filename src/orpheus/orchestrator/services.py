"""Use-case services: plan a prompt, dispatch its tasks, inspect backends."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from orpheus.config import Settings
from orpheus.orchestrator.backend.base import Backend
from orpheus.orchestrator.batch import BatchCoordinator
from orpheus.orchestrator.dispatcher import Dispatcher
from orpheus.orchestrator.errors import OrchestratorNotReady
from orpheus.orchestrator.models import BatchMode, DispatchResult, Event, ExecutionPlan, Task
from orpheus.orchestrator.planner import Planner, PromptPlan, build_execution_plan
from orpheus.orchestrator.registry import BackendRegistry
from orpheus.storage.base import EventSink

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionReport:
    """Plan built for a prompt together with one result per planned task."""

    plan: PromptPlan
    results: list[DispatchResult]

    @property
    def success(self) -> bool:
        return bool(self.results) and all(result.success for result in self.results)

    def to_payload(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_payload(),
            "success": self.success,
            "results": [result.to_payload() for result in self.results],
        }


class OrchestratorService:
    """Wires planner, registry, dispatcher and batch coordinator for one event sink."""

    def __init__(
        self,
        *,
        settings: Settings,
        sink: EventSink,
        registry: BackendRegistry | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.settings = settings
        self.sink = sink
        self.registry = registry if registry is not None else BackendRegistry()
        self.planner = Planner(settings.planner)
        dispatcher_kwargs: dict[str, Any] = {}
        if sleep is not None:
            dispatcher_kwargs["sleep"] = sleep
        self.dispatcher = Dispatcher(
            registry=self.registry,
            sink=sink,
            call_timeout_seconds=settings.retry.call_timeout_seconds,
            **dispatcher_kwargs,
        )

    def register_backend(self, backend: Backend) -> None:
        self.registry.register(backend)

    def registered_backends(self) -> list[str]:
        return list(self.registry)

    def plan_for(self, task: Task) -> ExecutionPlan:
        """Execution plan for ``task`` under the configured retry policy."""

        return build_execution_plan(task, retry=self.settings.retry, registered=self.registry)

    def execute(self, prompt: str, *, mode: BatchMode | None = None) -> ExecutionReport:
        """Plan ``prompt`` and dispatch every resulting task."""

        if not self.registry:
            raise OrchestratorNotReady(
                "No backends registered. Set ANTHROPIC_API_KEY, OPENAI_API_KEY "
                "or GOOGLE_AI_API_KEY.",
            )
        plan = self.planner.create_plan(prompt)
        logger.info("Plan %s: %s (%d task(s))", plan.id, plan.strategy, len(plan.tasks))
        if mode is None:
            mode = (
                BatchMode.CONCURRENT
                if self.settings.planner.parallel_execution
                else BatchMode.SEQUENTIAL
            )
        coordinator = BatchCoordinator(dispatcher=self.dispatcher, plan_for=self.plan_for)
        results = coordinator.dispatch_all(plan.tasks, mode)
        return ExecutionReport(plan=plan, results=results)

    def check_backends(self) -> dict[str, bool]:
        """Probe every registered backend; a raising probe counts as unavailable."""

        availability: dict[str, bool] = {}
        for backend_id, backend in self.registry.items():
            try:
                availability[backend_id] = bool(backend.probe_availability())
            except Exception as error:  # noqa: BLE001
                logger.warning("Availability probe for %s raised: %s", backend_id, error)
                availability[backend_id] = False
        return availability

    def history(self, task_id: str) -> list[Event]:
        return self.sink.query_by_task(task_id)

    def describe_config(self) -> dict[str, Any]:
        return self.settings.redacted()
