"""
Lifecycle events for tasks, workflow runs, consensus and learning.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TASK_SUBMITTED = "task.submitted"
    TASK_ROUTED = "task.routed"

    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_SUCCEEDED = "workflow.succeeded"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_CANCELLED = "workflow.cancelled"

    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    STEP_RETRYING = "step.retrying"
    STEP_SKIPPED = "step.skipped"
    STEP_CANCELLED = "step.cancelled"

    CONSENSUS_REQUESTED = "consensus.requested"
    CONSENSUS_REACHED = "consensus.reached"
    CONSENSUS_NOT_REACHED = "consensus.not_reached"

    RULE_LEARNED = "rule.learned"
    RULE_REINFORCED = "rule.reinforced"


@dataclass
class OrchestrationEvent:
    """Standardized event emitted by the core components."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.WORKFLOW_STARTED
    ref: Optional[str] = None
    step: Optional[str] = None
    role: Optional[str] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "ref": self.ref,
            "step": self.step,
            "role": self.role,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
        }


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[OrchestrationEvent], Any]] = []

    def on_event(self, handler: Callable[[OrchestrationEvent], Any]) -> None:
        self._handlers.append(handler)

    async def emit(self, event: OrchestrationEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception as exc:
                logger.warning("Event handler error for %s: %s", event.type.value, exc)


def log_event_handler(event: OrchestrationEvent) -> None:
    """Handler that writes events to the module logger."""
    level = logging.WARNING if event.type.value.endswith(("failed", "not_reached")) else logging.INFO
    logger.log(level, "%s %s %s", event.type.value, event.ref or "-", event.message)


class RedisEventPublisher:
    """Handler that publishes events to Redis Pub/Sub (``channel:run:<ref>``)."""

    def __init__(self, client: Any, channel_prefix: str = "channel:run") -> None:
        self._client = client
        self._channel_prefix = channel_prefix

    async def __call__(self, event: OrchestrationEvent) -> None:
        if not event.ref:
            return
        channel = f"{self._channel_prefix}:{event.ref}"
        await self._client.publish(channel, json.dumps(event.to_dict(), default=str))


def default_emitter(*, redis_client: Any = None) -> EventEmitter:
    """Emitter with the logging handler and, when given a client, Redis publishing."""
    emitter = EventEmitter()
    emitter.on_event(log_event_handler)
    if redis_client is not None:
        emitter.on_event(RedisEventPublisher(redis_client))
    return emitter
