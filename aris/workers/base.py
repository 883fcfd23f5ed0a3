"""Worker interface consumed by the orchestration core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..tasks import Task


@dataclass
class WorkerResult:
    """Structured reply from a worker."""

    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: int | None = None
    timed_out: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "WorkerResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, *, timed_out: bool = False) -> "WorkerResult":
        return cls(success=False, error=error, timed_out=timed_out)


class Worker(ABC):
    """A role-bound collaborator that processes one task at a time."""

    role: str
    capabilities: tuple[str, ...] = ()

    @abstractmethod
    async def process(self, task: Task, context: dict[str, Any]) -> WorkerResult:
        pass

    async def aclose(self) -> None:
        return None
