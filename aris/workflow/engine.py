"""
Dependency-ordered execution of workflow templates against workers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from ..bus import MessageBus
from ..config import Settings, settings as default_settings
from ..consensus import ConsensusCoordinator, ConsensusResult
from ..errors import TemplateValidationError, UnknownRunError, UnknownTemplateError, WorkflowRunError
from ..events import EventEmitter, EventType, OrchestrationEvent
from ..role_config import resolve_role
from ..tasks import Task
from .base import (
    FailureAction,
    RetryPolicy,
    RunSnapshot,
    RunStatus,
    StepKind,
    StepState,
    StepStatus,
    WorkflowStep,
    WorkflowTemplate,
)
from .templates import DEFAULT_TEMPLATES

if TYPE_CHECKING:
    from ..knowledge import KnowledgeStore
    from ..learning import LearningEngine

logger = logging.getLogger(__name__)

_BLOCKING = (StepStatus.SKIPPED, StepStatus.CANCELLED, StepStatus.FAILED)


@dataclass
class StepOutcome:
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class WorkflowRun:
    """Mutable state of one run. Only the engine's scheduler writes to it."""

    id: str
    template: WorkflowTemplate
    context: dict[str, Any]
    steps: dict[str, StepState]
    status: RunStatus = RunStatus.PENDING
    error: Optional[str] = None
    failed_step: Optional[str] = None
    history: list[tuple[str, StepStatus]] = field(default_factory=list)
    cancel_requested: bool = False
    aborted: bool = False
    task: Optional[asyncio.Task[None]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None

    def set_step(self, name: str, status: StepStatus) -> None:
        state = self.steps[name]
        state.status = status
        now = datetime.now(UTC)
        if status == StepStatus.RUNNING:
            state.started_at = now
        elif status.is_final:
            state.finished_at = now
        self.history.append((name, status))

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.id,
            template=self.template.name,
            status=self.status,
            steps={name: replace(state, detail=dict(state.detail)) for name, state in self.steps.items()},
            results={name: s.result for name, s in self.steps.items() if s.status == StepStatus.DONE},
            error=self.error,
            failed_step=self.failed_step,
        )


class WorkflowEngine:
    """Runs registered templates; each run is keyed by its run id.

    Ready steps are dispatched concurrently up to ``max_in_flight``. A failed
    step is retried per the template's policy, after which it either aborts
    the run or is skipped together with its dependents.
    """

    def __init__(
        self,
        bus: MessageBus,
        *,
        knowledge: KnowledgeStore | None = None,
        learning: LearningEngine | None = None,
        consensus: ConsensusCoordinator | None = None,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
        templates: Iterable[WorkflowTemplate] = DEFAULT_TEMPLATES,
        max_in_flight: int | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.bus = bus
        self.knowledge = knowledge
        self.learning = learning
        self.emitter = emitter
        self.consensus = consensus or ConsensusCoordinator(bus, settings=self.settings, emitter=emitter)
        self.max_in_flight = max(1, max_in_flight or self.settings.max_in_flight)
        self._templates: dict[str, WorkflowTemplate] = {}
        self._runs: dict[str, WorkflowRun] = {}
        for template in templates:
            self.register(template)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def register(self, template: WorkflowTemplate, *, replace: bool = False) -> None:
        template.validate()
        if template.name in self._templates and not replace:
            raise TemplateValidationError("Template already registered", ref=template.name)
        self._templates[template.name] = template
        logger.debug("Registered workflow template %s (%d steps)", template.name, len(template.steps))

    def get_template(self, name: str) -> WorkflowTemplate:
        template = self._templates.get(name)
        if template is None:
            raise UnknownTemplateError("Unknown workflow template", ref=name)
        return template

    @property
    def templates(self) -> list[WorkflowTemplate]:
        return list(self._templates.values())

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def start(self, template_name: str, context: dict[str, Any] | None = None) -> str:
        template = self.get_template(template_name)
        run = WorkflowRun(
            id=f"run-{uuid4().hex[:12]}",
            template=template,
            context=dict(context or {}),
            steps={step.name: StepState(name=step.name, role=step.role) for step in template.steps},
        )
        self._runs[run.id] = run
        run.status = RunStatus.RUNNING
        run.task = asyncio.get_running_loop().create_task(self._execute(run), name=run.id)
        return run.id

    async def wait(self, run_id: str) -> RunSnapshot:
        run = self._get_run(run_id)
        if run.task is not None:
            await run.task
        return run.snapshot()

    async def run(self, template_name: str, context: dict[str, Any] | None = None) -> RunSnapshot:
        return await self.wait(await self.start(template_name, context))

    def status(self, run_id: str) -> RunSnapshot:
        return self._get_run(run_id).snapshot()

    def history(self, run_id: str) -> list[tuple[str, StepStatus]]:
        return list(self._get_run(run_id).history)

    def cancel(self, run_id: str) -> bool:
        """Signal cancellation. Returns False if the run already finished or was cancelled."""
        run = self._get_run(run_id)
        if run.status.is_terminal or run.cancel_requested:
            return False
        run.cancel_requested = True
        for name, state in run.steps.items():
            if state.status in (StepStatus.PENDING, StepStatus.READY):
                run.set_step(name, StepStatus.CANCELLED)
        logger.info("Cancellation requested for run %s", run_id)
        return True

    def discard(self, run_id: str) -> None:
        run = self._get_run(run_id)
        if not run.status.is_terminal:
            raise WorkflowRunError("Run is still active", ref=run_id)
        del self._runs[run_id]

    def _get_run(self, run_id: str) -> WorkflowRun:
        run = self._runs.get(run_id)
        if run is None:
            raise UnknownRunError("Unknown workflow run", ref=run_id)
        return run

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _execute(self, run: WorkflowRun) -> None:
        await self._emit(EventType.WORKFLOW_STARTED, run, message=run.template.name)
        in_flight: dict[asyncio.Task[StepOutcome], str] = {}
        try:
            while True:
                if not (run.cancel_requested or run.aborted):
                    for name in self._settle_pending(run):
                        await self._emit(EventType.STEP_SKIPPED, run, step=name, message=run.steps[name].error or "")
                    for step in run.template.steps:
                        if len(in_flight) >= self.max_in_flight:
                            break
                        if run.steps[step.name].status != StepStatus.READY:
                            continue
                        run.set_step(step.name, StepStatus.RUNNING)
                        await self._emit(EventType.STEP_STARTED, run, step=step.name, role=step.role)
                        in_flight[asyncio.create_task(self._run_step(run, step))] = step.name

                if not in_flight:
                    break
                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    await self._settle_step(run, in_flight.pop(finished), finished)
        except asyncio.CancelledError:
            for pending in in_flight:
                pending.cancel()
            raise
        except Exception as exc:
            logger.exception("Run %s crashed", run.id)
            run.aborted = True
            run.error = f"{type(exc).__name__}: {exc}"

        self._finish(run)
        event_type = {
            RunStatus.SUCCEEDED: EventType.WORKFLOW_SUCCEEDED,
            RunStatus.FAILED: EventType.WORKFLOW_FAILED,
            RunStatus.CANCELLED: EventType.WORKFLOW_CANCELLED,
        }[run.status]
        await self._emit(event_type, run, message=run.error or "")

    def _settle_pending(self, run: WorkflowRun) -> list[str]:
        """Promote pending steps whose dependencies are done; skip those behind a dead branch."""
        skipped: list[str] = []
        changed = True
        while changed:
            changed = False
            for step in run.template.steps:
                state = run.steps[step.name]
                if state.status != StepStatus.PENDING:
                    continue
                blocked = sorted(dep for dep in step.depends_on if run.steps[dep].status in _BLOCKING)
                if blocked:
                    state.error = f"Dependency not done: {', '.join(blocked)}"
                    run.set_step(step.name, StepStatus.SKIPPED)
                    skipped.append(step.name)
                    changed = True
                elif all(run.steps[dep].status == StepStatus.DONE for dep in step.depends_on):
                    run.set_step(step.name, StepStatus.READY)
        return skipped

    async def _settle_step(self, run: WorkflowRun, name: str, finished: asyncio.Task[StepOutcome]) -> None:
        state = run.steps[name]
        step = run.template.step(name)
        exc = finished.exception()
        if exc is not None:
            logger.error("Run %s step %s raised: %s", run.id, name, exc)
            outcome = StepOutcome(success=False, error=f"{type(exc).__name__}: {exc}")
        else:
            outcome = finished.result()

        if run.cancel_requested or run.aborted:
            # Finished after cancellation or abort; the result is discarded.
            run.set_step(name, StepStatus.CANCELLED)
            await self._emit(EventType.STEP_CANCELLED, run, step=name, role=step.role, message="result discarded")
            return

        if outcome.success:
            state.result = outcome.result
            run.set_step(name, StepStatus.DONE)
            await self._emit(EventType.STEP_COMPLETED, run, step=name, role=step.role)
            return

        state.error = outcome.error
        action = step.on_failure or self._policy(run.template).on_exhausted
        if action == FailureAction.SKIP:
            run.set_step(name, StepStatus.SKIPPED)
            await self._emit(EventType.STEP_SKIPPED, run, step=name, role=step.role, message=outcome.error or "")
            return

        run.set_step(name, StepStatus.FAILED)
        await self._emit(EventType.STEP_FAILED, run, step=name, role=step.role, message=outcome.error or "")
        run.aborted = True
        run.error = outcome.error
        run.failed_step = name
        for other, other_state in run.steps.items():
            if other_state.status in (StepStatus.PENDING, StepStatus.READY):
                run.set_step(other, StepStatus.CANCELLED)

    def _finish(self, run: WorkflowRun) -> None:
        if run.aborted:
            run.status = RunStatus.FAILED
        elif run.cancel_requested:
            run.status = RunStatus.CANCELLED
        else:
            unfinished = [n for n, s in run.steps.items() if s.status not in (StepStatus.DONE, StepStatus.SKIPPED)]
            if unfinished:
                run.status = RunStatus.FAILED
                run.error = f"Steps did not finish: {', '.join(unfinished)}"
            else:
                run.status = RunStatus.SUCCEEDED
        run.finished_at = datetime.now(UTC)
        logger.info("Run %s (%s) finished: %s", run.id, run.template.name, run.status.value)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _policy(self, template: WorkflowTemplate) -> RetryPolicy:
        return template.retry or RetryPolicy(
            max_retries=self.settings.max_retries, delay=self.settings.retry_delay
        )

    def _timeout_for(self, role: str) -> float:
        return resolve_role(role).get("timeout_override") or self.settings.worker_timeout

    async def _run_step(self, run: WorkflowRun, step: WorkflowStep) -> StepOutcome:
        policy = self._policy(run.template)
        state = run.steps[step.name]
        context = await self._build_context(run, step)
        task = Task(
            description=step.description or f"{run.template.name}: {step.name}",
            task_type=step.task_type,
            payload={"run_id": run.id, "step": step.name, "config": dict(step.config)},
        )

        last_error = "Step did not run"
        for attempt in range(policy.max_retries + 1):
            if attempt:
                if run.cancel_requested or run.aborted:
                    break
                # No await between these two: the scheduler must never see a retrying step as failed.
                run.set_step(step.name, StepStatus.FAILED)
                run.set_step(step.name, StepStatus.RUNNING)
                await self._emit(
                    EventType.STEP_RETRYING, run, step=step.name, role=step.role, message=last_error,
                    data={"attempt": attempt + 1},
                )
                if policy.delay:
                    await asyncio.sleep(policy.delay)

            state.attempts = attempt + 1
            result = await self.bus.request(
                step.role, task, context, timeout=self._timeout_for(step.role), correlation_id=run.id
            )
            if not result.success:
                last_error = result.error or f"Worker '{step.role}' failed"
                logger.warning("Run %s step %s attempt %d failed: %s", run.id, step.name, attempt + 1, last_error)
                continue

            if step.kind != StepKind.CONSENSUS:
                return StepOutcome(success=True, result=result.data)

            verdict = await self._put_to_consensus(step, result.data)
            state.detail["consensus"] = verdict.to_dict()
            if verdict.approved:
                return StepOutcome(success=True, result=verdict.artifact)
            last_error = (
                f"Consensus not reached ({verdict.approvals}/{verdict.required_approvals} approvals)"
            )

        return StepOutcome(success=False, error=last_error)

    async def _put_to_consensus(self, step: WorkflowStep, artifact: Any) -> ConsensusResult:
        participants = step.config.get("participants") or self.settings.consensus_participants
        return await self.consensus.review_artifact(
            artifact, participants, timeout=step.config.get("consensus_timeout")
        )

    async def _build_context(self, run: WorkflowRun, step: WorkflowStep) -> dict[str, Any]:
        dependencies = {name: run.steps[name].result for name in sorted(step.depends_on)}
        context: dict[str, Any] = {
            "run_id": run.id,
            "template": run.template.name,
            "step": step.name,
            "role": step.role,
            "config": dict(step.config),
            "input": run.context,
            "dependencies": dependencies,
        }

        if self.knowledge is not None:
            query = step.config.get("query") or " ".join(
                part for part in (step.description, str(run.context.get("description") or "")) if part
            )
            snippets = await self.knowledge.retrieve(
                query or step.name, step.role, limit=self.settings.knowledge_snippet_limit
            )
            context["knowledge"] = [snippet.to_dict() for snippet in snippets]

        if step.kind == StepKind.REVIEW and self.learning is not None:
            text = self._review_text(run, step, dependencies)
            issues = await self.learning.review(text) if text else []
            context["review_issues"] = [issue.to_dict() for issue in issues]

        return context

    def _review_text(self, run: WorkflowRun, step: WorkflowStep, dependencies: dict[str, Any]) -> str:
        """The text under review: ``review_key`` from a dependency result, else from the run input."""
        key = step.config.get("review_key", "code")
        for result in dependencies.values():
            if isinstance(result, str):
                return result
            if isinstance(result, dict) and isinstance(result.get(key), str):
                return result[key]
        value = run.context.get(key)
        return value if isinstance(value, str) else ""

    async def _emit(
        self,
        event_type: EventType,
        run: WorkflowRun,
        *,
        step: str | None = None,
        role: str | None = None,
        message: str = "",
        data: dict[str, Any] | None = None,
    ) -> None:
        if self.emitter is None:
            return
        await self.emitter.emit(
            OrchestrationEvent(
                type=event_type, ref=run.id, step=step, role=role, message=message, data=data or {}
            )
        )
