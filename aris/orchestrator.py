"""Submission API: the single entry point callers use to drive the core."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .bus import MessageBus
from .config import Settings, settings as default_settings
from .consensus import ConsensusCoordinator, ConsensusRequest, ConsensusResult
from .errors import OrchestrationError
from .events import EventEmitter, EventType, OrchestrationEvent, default_emitter
from .knowledge import InMemoryKnowledgeStore, KnowledgeStore
from .learning import AuditReport, CodeDiff, LearningEngine, LearnOutcome, ReviewIssue
from .role_config import Role, resolve_role
from .routing import Route, Router
from .tasks import Task, TaskRegistry
from .triage import ComplexityClassifier, ComplexityScore
from .workers import HttpWorker, Worker
from .workflow import RunSnapshot, RunStatus, WorkflowEngine

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    task: Task
    score: ComplexityScore
    route: Route
    run: RunSnapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "score": self.score.to_dict(),
            "route": self.route.to_dict(),
            "run": self.run.to_dict(),
        }


class Orchestrator:
    """Wires classifier, router, workflow engine, consensus and learning together.

    Every collaborator can be injected; missing ones are built from
    ``settings`` so that several isolated orchestrators can coexist.
    """

    def __init__(
        self,
        *,
        bus: MessageBus | None = None,
        knowledge: KnowledgeStore | None = None,
        learning: LearningEngine | None = None,
        consensus: ConsensusCoordinator | None = None,
        engine: WorkflowEngine | None = None,
        classifier: ComplexityClassifier | None = None,
        router: Router | None = None,
        registry: TaskRegistry | None = None,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.emitter = emitter
        self.bus = bus or MessageBus()
        self.knowledge = knowledge if knowledge is not None else InMemoryKnowledgeStore()
        self.learning = learning or LearningEngine(
            knowledge=self.knowledge, settings=self.settings, emitter=emitter
        )
        self.consensus = consensus or ConsensusCoordinator(self.bus, settings=self.settings, emitter=emitter)
        self.engine = engine or WorkflowEngine(
            self.bus,
            knowledge=self.knowledge,
            learning=self.learning,
            consensus=self.consensus,
            settings=self.settings,
            emitter=emitter,
        )
        self.classifier = classifier or ComplexityClassifier()
        self._router = router
        self.registry = registry or TaskRegistry()

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Load persisted rules so reviews see them from the first request."""
        await self.learning.load()

    async def aclose(self) -> None:
        await self.bus.aclose()

    def register_worker(self, worker: Worker) -> None:
        self.bus.register(worker)

    @property
    def router(self) -> Router:
        if self._router is not None:
            return self._router
        return Router(capabilities=self.bus.capabilities())

    # Tasks -------------------------------------------------------------

    async def submit(self, task: Task) -> str:
        task_id = self.registry.submit(task)
        await self._emit(EventType.TASK_SUBMITTED, task_id, task.task_type)
        return task_id

    def status(self, task_id: str) -> Task:
        return self.registry.get(task_id)

    def take_result(self, task_id: str) -> Task:
        return self.registry.take_result(task_id)

    def cancel(self, task_id: str) -> Task:
        return self.registry.cancel(task_id)

    def classify(self, task: Task) -> ComplexityScore:
        return self.classifier.classify(task)

    def route(self, task: Task, score: ComplexityScore | None = None) -> Route:
        return self.router.route(score or self.classify(task), task)

    async def dispatch(self, task_id: str) -> DispatchOutcome:
        """Classify, route and run a submitted task, then record its outcome.

        The task always leaves ``in_progress``: if routing or the run raises,
        the task is failed before the exception propagates. The finished run
        is dropped from the engine once its snapshot is taken.
        """
        task = self.registry.start(task_id)
        try:
            score = self.classify(task)
            route = self.route(task, score)
            await self._emit(
                EventType.TASK_ROUTED,
                task.id,
                f"{score.level.value} -> {route.workflow}",
                data={"score": score.to_dict(), "route": route.to_dict()},
            )

            context: dict[str, Any] = dict(task.payload or {})
            context.update(
                {
                    "task": task.to_dict(),
                    "description": task.description,
                    "roles": list(route.roles),
                }
            )
            snapshot = await self.engine.run(route.workflow, context)
        except (Exception, asyncio.CancelledError) as exc:
            cause = exc.message if isinstance(exc, OrchestrationError) else f"{type(exc).__name__}: {exc}"
            logger.error("Dispatch of task %s failed: %s", task.id, cause)
            self.registry.fail(task.id, f"[orchestrator {task.id}] {cause}")
            raise
        self.engine.discard(snapshot.run_id)

        if snapshot.status == RunStatus.SUCCEEDED:
            self.registry.complete(task.id, snapshot.results)
        elif snapshot.status == RunStatus.CANCELLED:
            self.registry.cancel(task.id)
        else:
            self.registry.fail(task.id, f"[{snapshot.run_id} {snapshot.failed_step}] {snapshot.error}")
        return DispatchOutcome(task=task, score=score, route=route, run=snapshot)

    # Workflows ---------------------------------------------------------

    async def run_workflow(self, template_name: str, context: dict[str, Any] | None = None) -> str:
        return await self.engine.start(template_name, context)

    async def wait_run(self, run_id: str) -> RunSnapshot:
        return await self.engine.wait(run_id)

    def run_status(self, run_id: str) -> RunSnapshot:
        return self.engine.status(run_id)

    def cancel_run(self, run_id: str) -> bool:
        return self.engine.cancel(run_id)

    # Consensus & learning ----------------------------------------------

    async def resolve_consensus(self, request: ConsensusRequest) -> ConsensusResult:
        return await self.consensus.resolve(request)

    async def learn(self, diff: CodeDiff) -> LearnOutcome:
        return await self.learning.learn(diff)

    async def review(self, text: str) -> list[ReviewIssue]:
        return await self.learning.review(text)

    async def audit(self, code: str) -> AuditReport:
        return await self.learning.audit(code)

    def stats(self) -> dict[str, Any]:
        return {
            "tasks": len(self.registry),
            "workers": self.bus.roles(),
            "templates": [template.name for template in self.engine.templates],
            "learning": self.learning.stats(),
        }

    async def _emit(
        self, event_type: EventType, ref: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        if self.emitter is not None:
            await self.emitter.emit(OrchestrationEvent(type=event_type, ref=ref, message=message, data=data or {}))


def build_orchestrator(
    settings: Settings | None = None, workers: Iterable[Worker] | None = None
) -> Orchestrator:
    """Production wiring: knowledge backend, event handlers and workers from settings.

    Without explicit ``workers`` one ``HttpWorker`` per known role is created
    when ``worker_base_url`` is configured.
    """
    config = settings or default_settings

    if config.knowledge_backend == "sql":
        from .db import SqlKnowledgeStore

        knowledge: KnowledgeStore = SqlKnowledgeStore.from_settings(config)
    else:
        knowledge = InMemoryKnowledgeStore()

    redis_client = None
    if config.redis_events_enabled:
        from .redis_client import get_redis_client

        redis_client = get_redis_client(config)

    if workers is None:
        workers = []
        if config.worker_base_url:
            workers = [
                HttpWorker(
                    role,
                    base_url=config.worker_base_url,
                    capabilities=resolve_role(role).get("capabilities", ()),
                    timeout_seconds=resolve_role(role).get("timeout_override") or config.worker_timeout,
                )
                for role in Role
            ]
        else:
            logger.warning("No worker_base_url configured; no workers registered")

    orchestrator = Orchestrator(
        knowledge=knowledge,
        settings=config,
        emitter=default_emitter(redis_client=redis_client),
    )
    for worker in workers:
        orchestrator.register_worker(worker)
    return orchestrator
