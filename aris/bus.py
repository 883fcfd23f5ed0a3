"""In-process addressable mailboxes between the core and its workers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from .tasks import Task
from .workers.base import Worker, WorkerResult

logger = logging.getLogger(__name__)


class MessageType(StrEnum):
    TASK_REQUEST = "task-request"
    REVIEW_REQUEST = "review-request"
    CONSENSUS_REQUEST = "consensus-request"
    NOTIFICATION = "notification"


@dataclass
class Message:
    recipient: str
    type: MessageType
    content: dict[str, Any] = field(default_factory=dict)
    sender: str = "core"
    id: str = field(default_factory=lambda: f"msg-{uuid4().hex[:12]}")
    correlation_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def expects_reply(self) -> bool:
        return isinstance(self.content.get("task"), Task)


@dataclass
class Mailbox:
    address: str
    requests: asyncio.Queue[Message] = field(default_factory=asyncio.Queue)
    inbox: list[Message] = field(default_factory=list)
    delivered: int = 0


class MessageBus:
    """Routes messages to role-addressed mailboxes.

    Requests (messages carrying a task) are handed to the worker registered
    for the recipient role, in arrival order, and the worker's reply resolves
    the sender's wait. Other messages stay in the mailbox until drained.
    """

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}
        self._mailboxes: dict[str, Mailbox] = {}
        self._replies: dict[str, asyncio.Future[WorkerResult]] = {}
        self._deliveries: dict[str, asyncio.Task[None]] = {}

    async def __aenter__(self) -> "MessageBus":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def register(self, worker: Worker) -> None:
        role = str(worker.role)
        if role in self._workers:
            raise ValueError(f"A worker is already registered for role '{role}'")
        self._workers[role] = worker
        self.mailbox(role)
        logger.debug("Registered worker for role %s", role)

    def unregister(self, role: str) -> Worker | None:
        return self._workers.pop(str(role), None)

    def roles(self) -> list[str]:
        return list(self._workers)

    def worker(self, role: str) -> Worker | None:
        return self._workers.get(str(role))

    def capabilities(self) -> dict[str, tuple[str, ...]]:
        return {role: tuple(worker.capabilities) for role, worker in self._workers.items()}

    def mailbox(self, address: str) -> Mailbox:
        address = str(address)
        box = self._mailboxes.get(address)
        if box is None:
            box = Mailbox(address=address)
            self._mailboxes[address] = box
        return box

    async def send(self, message: Message) -> None:
        box = self.mailbox(message.recipient)
        if not message.expects_reply:
            box.inbox.append(message)
            return
        box.requests.put_nowait(message)
        delivery = asyncio.get_running_loop().create_task(self._deliver(box))
        delivery.add_done_callback(self._forget_delivery)

    def drain(self, address: str) -> list[Message]:
        """Take every undelivered message addressed to ``address``."""
        box = self.mailbox(address)
        messages, box.inbox = box.inbox, []
        return messages

    async def broadcast(
        self, content: dict[str, Any], *, sender: str = "core", type: MessageType = MessageType.NOTIFICATION
    ) -> list[Message]:
        sent: list[Message] = []
        for role in self.roles():
            message = Message(recipient=role, type=type, content=dict(content), sender=sender)
            await self.send(message)
            sent.append(message)
        return sent

    async def request(
        self,
        recipient: str,
        task: Task,
        context: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
        sender: str = "core",
        type: MessageType = MessageType.TASK_REQUEST,
        correlation_id: str | None = None,
    ) -> WorkerResult:
        recipient = str(recipient)
        if recipient not in self._workers:
            return WorkerResult.failure(f"No worker registered for role '{recipient}'")

        message = Message(
            recipient=recipient,
            type=type,
            content={"task": task, "context": context or {}},
            sender=sender,
            correlation_id=correlation_id,
        )
        reply: asyncio.Future[WorkerResult] = asyncio.get_running_loop().create_future()
        self._replies[message.id] = reply
        started = time.monotonic()
        try:
            await self.send(message)
            result = await asyncio.wait_for(reply, timeout)
        except TimeoutError:
            delivery = self._deliveries.pop(message.id, None)
            if delivery is not None:
                delivery.cancel()
            return WorkerResult.failure(
                f"Worker '{recipient}' did not answer within {timeout}s", timed_out=True
            )
        finally:
            self._replies.pop(message.id, None)

        if result.duration_ms is None:
            result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def _deliver(self, box: Mailbox) -> None:
        try:
            message = box.requests.get_nowait()
        except asyncio.QueueEmpty:
            return
        current = asyncio.current_task()
        if current is not None:
            self._deliveries[message.id] = current

        task: Task = message.content["task"]
        context: dict[str, Any] = message.content.get("context", {})
        worker = self._workers.get(box.address)
        if worker is None:
            result = WorkerResult.failure(f"No worker registered for role '{box.address}'")
        else:
            try:
                result = await worker.process(task, context)
                if not isinstance(result, WorkerResult):
                    result = WorkerResult.ok(result)
            except Exception as exc:
                logger.warning("Worker %s raised on task %s: %s", box.address, task.id, exc)
                result = WorkerResult.failure(f"{type(exc).__name__}: {exc}")
        box.delivered += 1
        self._deliveries.pop(message.id, None)

        reply = self._replies.get(message.id)
        if reply is not None and not reply.done():
            reply.set_result(result)

    def _forget_delivery(self, delivery: asyncio.Task[None]) -> None:
        if delivery.cancelled():
            return
        exc = delivery.exception()
        if exc is not None:
            logger.error("Message delivery crashed: %s", exc)

    async def aclose(self) -> None:
        deliveries = list(self._deliveries.values())
        for delivery in deliveries:
            delivery.cancel()
        if deliveries:
            await asyncio.gather(*deliveries, return_exceptions=True)
        self._deliveries.clear()
        for reply in self._replies.values():
            if not reply.done():
                reply.set_result(WorkerResult.failure("Message bus closed"))
        self._replies.clear()
        for worker in self._workers.values():
            await worker.aclose()
