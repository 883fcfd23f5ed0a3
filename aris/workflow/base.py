"""
Workflow template and run-state abstractions.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Optional

from ..errors import TemplateValidationError, WorkflowRunError


class StepStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (StepStatus.DONE, StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.CANCELLED)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepKind(str, Enum):
    TASK = "task"
    REVIEW = "review"
    CONSENSUS = "consensus"


class FailureAction(str, Enum):
    ABORT = "abort"
    SKIP = "skip"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    on_exhausted: FailureAction = FailureAction.ABORT
    delay: float = 0.0


@dataclass(frozen=True)
class WorkflowStep:
    """One step of a template, bound to a worker role."""

    name: str
    role: str
    depends_on: frozenset[str] = frozenset()
    config: Mapping[str, Any] = field(default_factory=dict)
    action: Optional[str] = None
    kind: StepKind = StepKind.TASK
    on_failure: Optional[FailureAction] = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", str(self.role))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def task_type(self) -> str:
        return self.action or self.name


@dataclass(frozen=True)
class WorkflowTemplate:
    """A named, ordered list of steps. Immutable once registered.

    Without an explicit ``retry`` policy the engine's configured defaults apply.
    """

    name: str
    steps: tuple[WorkflowStep, ...]
    retry: Optional[RetryPolicy] = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))

    def step(self, name: str) -> WorkflowStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    @property
    def roles(self) -> list[str]:
        return list(dict.fromkeys(step.role for step in self.steps))

    def validate(self) -> None:
        """Raise ``TemplateValidationError`` for malformed or cyclic step graphs."""
        if not self.steps:
            raise TemplateValidationError("Template has no steps", ref=self.name)

        names: set[str] = set()
        for step in self.steps:
            if step.name in names:
                raise TemplateValidationError(f"Duplicate step name '{step.name}'", ref=self.name)
            names.add(step.name)

        for step in self.steps:
            if step.name in step.depends_on:
                raise TemplateValidationError(f"Step '{step.name}' depends on itself", ref=self.name)
            unknown = sorted(step.depends_on - names)
            if unknown:
                raise TemplateValidationError(
                    f"Step '{step.name}' depends on unknown steps: {', '.join(unknown)}", ref=self.name
                )

        cycle = find_cycle({step.name: step.depends_on for step in self.steps})
        if cycle:
            raise TemplateValidationError(f"Dependency cycle: {' -> '.join(cycle)}", ref=self.name)


def find_cycle(graph: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Return one dependency cycle as a closed path, or None."""
    visiting: list[str] = []
    state: dict[str, int] = {}  # 1 = on stack, 2 = finished

    def visit(node: str) -> list[str] | None:
        state[node] = 1
        visiting.append(node)
        for dep in sorted(graph.get(node, ())):
            if state.get(dep) == 1:
                return visiting[visiting.index(dep):] + [dep]
            if dep not in state:
                found = visit(dep)
                if found:
                    return found
        visiting.pop()
        state[node] = 2
        return None

    for node in graph:
        if node not in state:
            found = visit(node)
            if found:
                return found
    return None


@dataclass
class StepState:
    name: str
    role: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    result: Any = None
    error: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "role": self.role,
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RunSnapshot:
    """Point-in-time view of a workflow run."""

    run_id: str
    template: str
    status: RunStatus
    steps: dict[str, StepState]
    results: dict[str, Any]
    error: Optional[str] = None
    failed_step: Optional[str] = None

    @property
    def step_states(self) -> dict[str, StepStatus]:
        return {name: state.status for name, state in self.steps.items()}

    def raise_for_status(self) -> None:
        """Raise ``WorkflowRunError`` if the run failed."""
        if self.status == RunStatus.FAILED:
            raise WorkflowRunError(
                f"Step '{self.failed_step}' failed: {self.error}", ref=self.run_id, step=self.failed_step
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "template": self.template,
            "status": self.status.value,
            "step_states": {name: status.value for name, status in self.step_states.items()},
            "steps": [state.to_dict() for state in self.steps.values()],
            "results": self.results,
            "error": self.error,
            "failed_step": self.failed_step,
        }
