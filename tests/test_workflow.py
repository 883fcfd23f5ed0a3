import asyncio
from typing import Any

import pytest

from aris.bus import MessageBus
from aris.config import Settings
from aris.errors import TemplateValidationError, UnknownRunError, UnknownTemplateError, WorkflowRunError
from aris.events import EventEmitter, EventType, OrchestrationEvent
from aris.knowledge import InMemoryKnowledgeStore, Snippet
from aris.learning import CodeDiff, LearningEngine
from aris.tasks import Task
from aris.workers import ScriptedWorker, approving_reviewer
from aris.workflow import (
    DEFAULT_TEMPLATES,
    FailureAction,
    RetryPolicy,
    RunStatus,
    StepKind,
    StepStatus,
    WorkflowEngine,
    WorkflowStep,
    WorkflowTemplate,
)


def _engine(settings: Settings, *workers: ScriptedWorker, templates=(), **kwargs: Any) -> WorkflowEngine:
    bus = MessageBus()
    for worker in workers:
        bus.register(worker)
    return WorkflowEngine(bus, settings=settings, templates=templates, **kwargs)


def _echo(task: Task, context: dict[str, Any]) -> dict[str, Any]:
    return {"action": task.task_type, "step": context["step"]}


def test_default_templates_are_valid(test_settings: Settings) -> None:
    engine = WorkflowEngine(MessageBus(), settings=test_settings)

    names = [template.name for template in engine.templates]
    assert len(names) == len(DEFAULT_TEMPLATES) == 10
    assert "quick-fix" in names
    assert "ci-cd-pipeline" in names


def test_cycle_is_rejected_at_registration(test_settings: Settings) -> None:
    engine = _engine(test_settings)
    template = WorkflowTemplate(
        "loop",
        (
            WorkflowStep("a", "implementer", depends_on={"b"}),
            WorkflowStep("b", "implementer", depends_on={"a"}),
        ),
    )

    with pytest.raises(TemplateValidationError) as exc_info:
        engine.register(template)

    assert "Dependency cycle: a -> b -> a" in exc_info.value.message
    with pytest.raises(UnknownTemplateError):
        engine.get_template("loop")


@pytest.mark.parametrize(
    "steps",
    [
        (),
        (WorkflowStep("a", "implementer"), WorkflowStep("a", "executor")),
        (WorkflowStep("a", "implementer", depends_on={"a"}),),
        (WorkflowStep("a", "implementer", depends_on={"ghost"}),),
    ],
)
def test_malformed_templates_are_rejected(test_settings: Settings, steps: tuple[WorkflowStep, ...]) -> None:
    with pytest.raises(TemplateValidationError):
        _engine(test_settings).register(WorkflowTemplate("broken", steps))


def test_step_config_is_read_only() -> None:
    source = {"participants": ["designer"]}
    step = WorkflowStep("a", "designer", config=source)
    source["participants"] = []

    with pytest.raises(TypeError):
        step.config["query"] = "checkout"  # type: ignore[index]
    assert step.config["participants"] == ["designer"]


def test_duplicate_template_names(test_settings: Settings) -> None:
    engine = _engine(test_settings)
    template = WorkflowTemplate("single", (WorkflowStep("a", "implementer"),))
    engine.register(template)

    with pytest.raises(TemplateValidationError):
        engine.register(template)
    engine.register(template, replace=True)


@pytest.mark.asyncio
async def test_dependent_step_runs_after_its_dependency(test_settings: Settings) -> None:
    worker = ScriptedWorker("implementer", default=_echo, delay=0.01)
    template = WorkflowTemplate(
        "ordered",
        (
            WorkflowStep("b", "implementer", depends_on={"a"}, action="second"),
            WorkflowStep("a", "implementer", action="first"),
        ),
    )
    engine = _engine(test_settings, worker, templates=[template])

    snapshot = await engine.run("ordered", {"description": "two steps"})

    assert snapshot.status == RunStatus.SUCCEEDED
    history = engine.history(snapshot.run_id)
    assert history.index(("a", StepStatus.DONE)) < history.index(("b", StepStatus.RUNNING))
    assert [call.task.task_type for call in worker.calls] == ["first", "second"]
    assert worker.calls[1].context["dependencies"] == {"a": {"action": "first", "step": "a"}}
    assert worker.calls[0].context["input"] == {"description": "two steps"}
    assert snapshot.results["b"] == {"action": "second", "step": "b"}


@pytest.mark.asyncio
async def test_independent_steps_respect_max_in_flight(test_settings: Settings) -> None:
    worker = ScriptedWorker("implementer", default="ok", delay=0.05)
    template = WorkflowTemplate(
        "fan-out", tuple(WorkflowStep(name, "implementer") for name in ("a", "b", "c"))
    )
    engine = _engine(test_settings, worker, templates=[template], max_in_flight=2)

    snapshot = await engine.run("fan-out")

    assert snapshot.status == RunStatus.SUCCEEDED
    assert worker.call_count == 3
    assert worker.max_in_flight == 2


@pytest.mark.asyncio
async def test_failed_step_is_retried(test_settings: Settings) -> None:
    worker = ScriptedWorker("implementer", default="ok", fail_times=1)
    template = WorkflowTemplate("flaky", (WorkflowStep("a", "implementer"),), retry=RetryPolicy(max_retries=2))
    engine = _engine(test_settings, worker, templates=[template])

    snapshot = await engine.run("flaky")

    assert snapshot.status == RunStatus.SUCCEEDED
    assert snapshot.steps["a"].attempts == 2
    assert snapshot.results == {"a": "ok"}
    assert [status for name, status in engine.history(snapshot.run_id) if name == "a"] == [
        StepStatus.READY,
        StepStatus.RUNNING,
        StepStatus.FAILED,
        StepStatus.RUNNING,
        StepStatus.DONE,
    ]


@pytest.mark.asyncio
async def test_retrying_step_does_not_skip_its_dependents(test_settings: Settings) -> None:
    flaky = ScriptedWorker("implementer", default="ok", fail_times=1, delay=0.05)
    steady = ScriptedWorker("executor", default="ok", delay=0.08)
    template = WorkflowTemplate(
        "mixed",
        (
            WorkflowStep("a", "implementer"),
            WorkflowStep("b", "implementer", depends_on={"a"}),
            WorkflowStep("c", "executor"),
        ),
        retry=RetryPolicy(max_retries=2, delay=0.05),
    )
    engine = _engine(test_settings, flaky, steady, templates=[template])

    snapshot = await engine.run("mixed")

    assert snapshot.status == RunStatus.SUCCEEDED
    assert set(snapshot.results) == {"a", "b", "c"}


@pytest.mark.asyncio
async def test_exhausted_retries_abort_the_run(test_settings: Settings) -> None:
    implementer = ScriptedWorker("implementer", fail_times=5, error="compile error")
    executor = ScriptedWorker("executor", default="ok")
    template = WorkflowTemplate(
        "doomed",
        (
            WorkflowStep("a", "implementer"),
            WorkflowStep("b", "executor", depends_on={"a"}),
        ),
        retry=RetryPolicy(max_retries=1),
    )
    engine = _engine(test_settings, implementer, executor, templates=[template])

    snapshot = await engine.run("doomed")

    assert snapshot.status == RunStatus.FAILED
    assert snapshot.failed_step == "a"
    assert snapshot.error == "compile error"
    assert snapshot.steps["a"].attempts == 2
    assert snapshot.step_states == {"a": StepStatus.FAILED, "b": StepStatus.CANCELLED}
    assert executor.call_count == 0
    with pytest.raises(WorkflowRunError) as exc_info:
        snapshot.raise_for_status()
    assert exc_info.value.step == "a"


@pytest.mark.asyncio
async def test_skipped_step_skips_its_dependents(test_settings: Settings) -> None:
    implementer = ScriptedWorker("implementer", fail_times=5)
    executor = ScriptedWorker("executor", default="ok")
    template = WorkflowTemplate(
        "optional",
        (
            WorkflowStep("a", "implementer", on_failure=FailureAction.SKIP),
            WorkflowStep("b", "executor", depends_on={"a"}),
            WorkflowStep("c", "executor"),
        ),
        retry=RetryPolicy(max_retries=0),
    )
    engine = _engine(test_settings, implementer, executor, templates=[template])

    snapshot = await engine.run("optional")

    assert snapshot.status == RunStatus.SUCCEEDED
    assert snapshot.step_states == {
        "a": StepStatus.SKIPPED,
        "b": StepStatus.SKIPPED,
        "c": StepStatus.DONE,
    }
    assert snapshot.steps["b"].error == "Dependency not done: a"
    assert executor.call_count == 1


@pytest.mark.asyncio
async def test_cancel_discards_in_flight_results(test_settings: Settings) -> None:
    implementer = ScriptedWorker("implementer", default="late", delay=0.2)
    executor = ScriptedWorker("executor", default="ok")
    template = WorkflowTemplate(
        "slow",
        (
            WorkflowStep("a", "implementer"),
            WorkflowStep("b", "executor", depends_on={"a"}),
        ),
    )
    engine = _engine(test_settings, implementer, executor, templates=[template])

    run_id = await engine.start("slow")
    await asyncio.sleep(0.05)
    assert engine.cancel(run_id) is True
    assert engine.cancel(run_id) is False
    snapshot = await engine.wait(run_id)

    assert snapshot.status == RunStatus.CANCELLED
    assert snapshot.step_states == {"a": StepStatus.CANCELLED, "b": StepStatus.CANCELLED}
    assert snapshot.results == {}
    assert executor.call_count == 0
    assert engine.cancel(run_id) is False


@pytest.mark.asyncio
async def test_consensus_step_merges_suggestions(test_settings: Settings) -> None:
    designer = ScriptedWorker("designer", replies={"generate-blueprint": {"name": "checkout"}})
    participants = [
        approving_reviewer("implementer", suggestions=["Add rate limiting to the public API"]),
        approving_reviewer("reviewer"),
        approving_reviewer("planner"),
    ]
    template = WorkflowTemplate(
        "blueprint",
        (WorkflowStep("blueprint", "designer", action="generate-blueprint", kind=StepKind.CONSENSUS),),
    )
    engine = _engine(test_settings, designer, *participants, templates=[template])

    snapshot = await engine.run("blueprint")

    assert snapshot.status == RunStatus.SUCCEEDED
    artifact = snapshot.results["blueprint"]
    assert artifact["name"] == "checkout"
    assert artifact["security"]["rate_limiting"] == {"enabled": True, "requests_per_minute": 100}
    verdict = snapshot.steps["blueprint"].detail["consensus"]
    assert verdict["approved"] is True
    assert verdict["applied_patches"] == ["rate-limiting"]


@pytest.mark.asyncio
async def test_rejected_consensus_fails_the_step(test_settings: Settings) -> None:
    designer = ScriptedWorker("designer", default={"name": "checkout"})
    participants = [approving_reviewer(role, approved=False) for role in ("implementer", "reviewer", "planner")]
    template = WorkflowTemplate(
        "blueprint",
        (WorkflowStep("blueprint", "designer", kind=StepKind.CONSENSUS),),
    )
    engine = _engine(test_settings, designer, *participants, templates=[template])

    snapshot = await engine.run("blueprint")

    assert snapshot.status == RunStatus.FAILED
    assert snapshot.error == "Consensus not reached (0/3 approvals)"
    assert designer.call_count == 2


@pytest.mark.asyncio
async def test_review_step_receives_learned_issues(test_settings: Settings) -> None:
    learning = LearningEngine(settings=test_settings)
    await learning.learn(CodeDiff("app.js", "var total = 0;\n", "const total = 0;\n"))
    implementer = ScriptedWorker("implementer", default={"code": "var count = 1;"})
    reviewer = ScriptedWorker("reviewer", default={"approved": True})
    template = WorkflowTemplate(
        "reviewed",
        (
            WorkflowStep("implement", "implementer"),
            WorkflowStep("review", "reviewer", depends_on={"implement"}, kind=StepKind.REVIEW),
        ),
    )
    engine = _engine(test_settings, implementer, reviewer, templates=[template], learning=learning)

    snapshot = await engine.run("reviewed")

    assert snapshot.status == RunStatus.SUCCEEDED
    (issue,) = reviewer.calls[0].context["review_issues"]
    assert issue["category"] == "style"
    assert issue["message"] == "Use let or const instead of var"


@pytest.mark.asyncio
async def test_steps_receive_role_knowledge(test_settings: Settings) -> None:
    knowledge = InMemoryKnowledgeStore(
        [
            Snippet("Checkout flow calls the payments gateway", title="checkout", role="implementer"),
            Snippet("Checkout flow wireframes", title="checkout ui", role="ui-specialist"),
        ]
    )
    worker = ScriptedWorker("implementer", default="ok")
    template = WorkflowTemplate("single", (WorkflowStep("a", "implementer"),))
    engine = _engine(test_settings, worker, templates=[template], knowledge=knowledge)

    await engine.run("single", {"description": "checkout flow"})

    snippets = worker.calls[0].context["knowledge"]
    assert [s["title"] for s in snippets] == ["checkout"]


@pytest.mark.asyncio
async def test_role_timeout_override(test_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROLE_IMPLEMENTER_TIMEOUT", "0.05")
    worker = ScriptedWorker("implementer", hang=True)
    template = WorkflowTemplate("stuck", (WorkflowStep("a", "implementer"),), retry=RetryPolicy(max_retries=0))
    engine = _engine(test_settings, worker, templates=[template])

    snapshot = await engine.run("stuck")

    assert snapshot.status == RunStatus.FAILED
    assert snapshot.error == "Worker 'implementer' did not answer within 0.05s"
    await engine.bus.aclose()


@pytest.mark.asyncio
async def test_unknown_template_and_run(test_settings: Settings) -> None:
    engine = _engine(test_settings)

    with pytest.raises(UnknownTemplateError):
        await engine.start("nope")
    with pytest.raises(UnknownRunError):
        engine.status("run-missing")


@pytest.mark.asyncio
async def test_discard_only_finished_runs(test_settings: Settings) -> None:
    worker = ScriptedWorker("implementer", default="ok", delay=0.05)
    template = WorkflowTemplate("single", (WorkflowStep("a", "implementer"),))
    engine = _engine(test_settings, worker, templates=[template])

    run_id = await engine.start("single")
    with pytest.raises(WorkflowRunError):
        engine.discard(run_id)

    await engine.wait(run_id)
    engine.discard(run_id)
    with pytest.raises(UnknownRunError):
        engine.status(run_id)


@pytest.mark.asyncio
async def test_run_emits_lifecycle_events(test_settings: Settings) -> None:
    events: list[OrchestrationEvent] = []
    emitter = EventEmitter()
    emitter.on_event(events.append)
    worker = ScriptedWorker("implementer", default="ok")
    template = WorkflowTemplate("single", (WorkflowStep("a", "implementer"),))
    engine = _engine(test_settings, worker, templates=[template], emitter=emitter)

    snapshot = await engine.run("single")

    types = [event.type for event in events]
    assert types == [EventType.WORKFLOW_STARTED, EventType.STEP_STARTED, EventType.STEP_COMPLETED, EventType.WORKFLOW_SUCCEEDED]
    assert all(event.ref == snapshot.run_id for event in events)


@pytest.mark.asyncio
async def test_builtin_templates_run_against_fleet(
    test_settings: Settings, fleet: dict[str, ScriptedWorker]
) -> None:
    engine = _engine(test_settings, *fleet.values(), templates=DEFAULT_TEMPLATES)

    quick = await engine.run("quick-fix")
    pipeline = await engine.run("ci-cd-pipeline")
    complex_run = await engine.run("complex-workflow")

    assert quick.status == RunStatus.SUCCEEDED
    assert set(quick.results) == {"implement", "verify"}
    assert pipeline.status == RunStatus.SUCCEEDED
    assert len(pipeline.results) == 7
    assert complex_run.status == RunStatus.SUCCEEDED
    assert complex_run.steps["blueprint"].detail["consensus"]["approved"] is True
