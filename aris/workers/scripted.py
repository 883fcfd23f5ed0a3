"""In-process worker double with scripted replies."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..tasks import Task
from .base import Worker, WorkerResult

Handler = Callable[[Task, dict[str, Any]], Any | Awaitable[Any]]


@dataclass
class WorkerCall:
    task: Task
    context: dict[str, Any]
    started_at: float


class ScriptedWorker(Worker):
    """Answers from a per-action script, a handler, or a default payload.

    ``replies`` maps a task type to either a payload or a handler. A handler
    may return a ``WorkerResult``, plain data (wrapped as success) or raise.
    ``fail_times`` makes the first N calls fail; ``delay`` sleeps before every
    reply; ``hang`` never replies (for timeout tests).
    """

    def __init__(
        self,
        role: str,
        *,
        replies: Mapping[str, Any | Handler] | None = None,
        default: Any | Handler = None,
        capabilities: Sequence[str] = (),
        fail_times: int = 0,
        error: str = "scripted failure",
        delay: float = 0.0,
        hang: bool = False,
    ) -> None:
        self.role = str(role)
        self.capabilities = tuple(capabilities)
        self._replies = dict(replies or {})
        self._default = default
        self._fail_times = fail_times
        self._error = error
        self._delay = delay
        self._hang = hang
        self.calls: list[WorkerCall] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def process(self, task: Task, context: dict[str, Any]) -> WorkerResult:
        loop = asyncio.get_running_loop()
        self.calls.append(WorkerCall(task=task, context=context, started_at=loop.time()))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._hang:
                await asyncio.Event().wait()
            if self._delay:
                await asyncio.sleep(self._delay)
            if self._fail_times > 0:
                self._fail_times -= 1
                return WorkerResult.failure(self._error)

            reply = self._replies.get(task.task_type, self._default)
            if callable(reply):
                reply = reply(task, context)
                if inspect.isawaitable(reply):
                    reply = await reply
            if isinstance(reply, WorkerResult):
                return reply
            return WorkerResult.ok(reply)
        finally:
            self.in_flight -= 1

    @property
    def call_count(self) -> int:
        return len(self.calls)


def approving_reviewer(
    role: str,
    *,
    approved: bool = True,
    feedback: Sequence[str] = (),
    suggestions: Sequence[str] = (),
    confidence: float = 0.85,
    **kwargs: Any,
) -> ScriptedWorker:
    """Scripted consensus participant with a fixed verdict."""
    verdict = {
        "approved": approved,
        "feedback": list(feedback),
        "suggestions": list(suggestions),
        "confidence": confidence,
    }
    return ScriptedWorker(role, replies={"review-artifact": verdict}, default=verdict, **kwargs)
