"""Task model and the in-process task registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from .errors import TaskDependencyError, TaskNotFoundError

logger = logging.getLogger(__name__)


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Task:
    """A unit of submitted work."""

    description: str
    task_type: str
    payload: dict[str, Any] | None = None
    dependencies: list[str] = field(default_factory=list)
    priority: TaskPriority = TaskPriority.MEDIUM
    id: str = field(default_factory=lambda: f"task-{uuid4().hex[:12]}")
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "task_type": self.task_type,
            "payload": self.payload,
            "dependencies": list(self.dependencies),
            "priority": self.priority.value,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def _transition(self, status: TaskStatus) -> None:
        self.status = status
        self.updated_at = _now()


class TaskRegistry:
    """Tracks submitted tasks until their result has been retrieved."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, task: Task) -> str:
        if task.id in self._tasks:
            raise TaskDependencyError("Task id already submitted", ref=task.id)
        unknown = [dep for dep in task.dependencies if dep not in self._tasks]
        if unknown:
            raise TaskDependencyError(f"Unknown dependencies: {', '.join(unknown)}", ref=task.id)
        self._tasks[task.id] = task
        logger.debug("Submitted task %s (%s)", task.id, task.task_type)
        return task.id

    def get(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError("Task not found", ref=task_id)
        return task

    def unmet_dependencies(self, task: Task) -> list[str]:
        unmet: list[str] = []
        for dep in task.dependencies:
            dep_task = self._tasks.get(dep)
            if dep_task is None or dep_task.status != TaskStatus.COMPLETED:
                unmet.append(dep)
        return unmet

    def start(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task.status != TaskStatus.PENDING:
            raise TaskDependencyError(f"Cannot start task in status {task.status.value}", ref=task_id)
        unmet = self.unmet_dependencies(task)
        if unmet:
            raise TaskDependencyError(
                f"Dependencies not completed: {', '.join(unmet)}", ref=task_id
            )
        task._transition(TaskStatus.IN_PROGRESS)
        return task

    def complete(self, task_id: str, result: Any = None) -> Task:
        task = self.get(task_id)
        task.result = result
        task._transition(TaskStatus.COMPLETED)
        return task

    def fail(self, task_id: str, error: str) -> Task:
        task = self.get(task_id)
        task.error = error
        task._transition(TaskStatus.FAILED)
        return task

    def cancel(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task.status.is_terminal:
            return task
        task._transition(TaskStatus.CANCELLED)
        return task

    def take_result(self, task_id: str) -> Task:
        """Return a terminal task and archive it."""
        task = self.get(task_id)
        if not task.status.is_terminal:
            raise TaskDependencyError("Task has not finished yet", ref=task_id)
        dependents = [
            t.id for t in self._tasks.values() if task_id in t.dependencies and not t.status.is_terminal
        ]
        if dependents:
            # Open dependents still need to see this task as completed.
            return task
        del self._tasks[task_id]
        return task
