"""
Quorum-based approval of design artifacts among worker roles.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from .bus import MessageBus, MessageType
from .config import Settings, settings as default_settings
from .errors import ConsensusRequestError
from .events import EventEmitter, EventType, OrchestrationEvent
from .suggestions import DEFAULT_PATCHES, SuggestionPatch, merge_suggestions
from .tasks import Task

logger = logging.getLogger(__name__)

REVIEW_ACTION = "review-artifact"


@dataclass
class ConsensusPolicy:
    """Quorum ratio and the suggestion patch catalogue."""

    approval_ratio: float = 0.7
    patches: Sequence[SuggestionPatch] = DEFAULT_PATCHES

    def required_approvals(self, participant_count: int) -> int:
        # round() keeps 0.7 * 10 from becoming 7.000000000000001
        return max(1, math.ceil(round(self.approval_ratio * participant_count, 9)))


@dataclass
class ConsensusRequest:
    artifact: Any
    participants: list[str]
    deadline: datetime
    required_approvals: int | None = None
    id: str = field(default_factory=lambda: f"consensus-{uuid4().hex[:12]}")


@dataclass
class ConsensusResponse:
    participant: str
    approved: bool
    feedback: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    confidence: float = 0.0

    @classmethod
    def from_data(cls, participant: str, data: Any) -> "ConsensusResponse | None":
        """Parse a worker reply; anything without a boolean ``approved`` is unreadable."""
        if not isinstance(data, dict) or not isinstance(data.get("approved"), bool):
            return None
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return cls(
            participant=participant,
            approved=data["approved"],
            feedback=_strings(data.get("feedback")),
            suggestions=_strings(data.get("suggestions")),
            confidence=min(1.0, max(0.0, confidence)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant": self.participant,
            "approved": self.approved,
            "feedback": list(self.feedback),
            "suggestions": list(self.suggestions),
            "confidence": self.confidence,
        }


@dataclass
class ConsensusResult:
    request_id: str
    approved: bool
    responses: list[ConsensusResponse]
    artifact: Any
    feedback: list[str]
    missing: list[str]
    required_approvals: int
    applied_patches: list[str] = field(default_factory=list)
    average_confidence: float = 0.0

    @property
    def approvals(self) -> int:
        return sum(1 for r in self.responses if r.approved)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "approved": self.approved,
            "approvals": self.approvals,
            "required_approvals": self.required_approvals,
            "responses": [r.to_dict() for r in self.responses],
            "missing": list(self.missing),
            "artifact": self.artifact,
            "feedback": list(self.feedback),
            "applied_patches": list(self.applied_patches),
            "average_confidence": round(self.average_confidence, 4),
        }


def _strings(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


class ConsensusCoordinator:
    """Puts an artifact to every participant at once and counts approvals.

    A participant that fails, answers with something unreadable or misses the
    deadline is recorded as missing, which counts as not approving.
    """

    def __init__(
        self,
        bus: MessageBus,
        *,
        policy: ConsensusPolicy | None = None,
        settings: Settings | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.bus = bus
        self.policy = policy or ConsensusPolicy(approval_ratio=self.settings.consensus_approval_ratio)
        self.emitter = emitter

    def new_request(
        self,
        artifact: Any,
        participants: Sequence[str] | None = None,
        *,
        timeout: float | None = None,
        required_approvals: int | None = None,
    ) -> ConsensusRequest:
        timeout = self.settings.consensus_timeout if timeout is None else timeout
        return ConsensusRequest(
            artifact=artifact,
            participants=list(participants if participants is not None else self.settings.consensus_participants),
            deadline=datetime.now(UTC) + timedelta(seconds=timeout),
            required_approvals=required_approvals,
        )

    async def review_artifact(
        self,
        artifact: Any,
        participants: Sequence[str] | None = None,
        *,
        timeout: float | None = None,
    ) -> ConsensusResult:
        return await self.resolve(self.new_request(artifact, participants, timeout=timeout))

    async def resolve(self, request: ConsensusRequest) -> ConsensusResult:
        participants = list(dict.fromkeys(str(p) for p in request.participants))
        if not participants:
            raise ConsensusRequestError("Consensus request has no participants", ref=request.id)
        if request.required_approvals is None:
            required = self.policy.required_approvals(len(participants))
        elif request.required_approvals < 1:
            raise ConsensusRequestError(
                f"required_approvals must be at least 1, got {request.required_approvals}", ref=request.id
            )
        else:
            required = request.required_approvals

        await self._emit(EventType.CONSENSUS_REQUESTED, request.id, f"{len(participants)} participants")

        remaining = (request.deadline - datetime.now(UTC)).total_seconds()
        responses: list[ConsensusResponse] = []
        missing: list[str] = []
        if remaining <= 0:
            missing = participants
        else:
            task = Task(
                description=f"Review artifact for consensus {request.id}",
                task_type=REVIEW_ACTION,
                payload={"consensus_id": request.id, "artifact": request.artifact},
            )
            context = {
                "consensus_id": request.id,
                "artifact": request.artifact,
                "required_approvals": required,
                "participants": participants,
            }
            results = await asyncio.gather(
                *(
                    self.bus.request(
                        role,
                        task,
                        context,
                        timeout=remaining,
                        type=MessageType.CONSENSUS_REQUEST,
                        correlation_id=request.id,
                    )
                    for role in participants
                )
            )
            for role, result in zip(participants, results):
                response = ConsensusResponse.from_data(role, result.data) if result.success else None
                if response is None:
                    reason = result.error if not result.success else "unreadable response"
                    logger.info("Consensus %s: no usable answer from %s (%s)", request.id, role, reason)
                    missing.append(role)
                    continue
                responses.append(response)

        approvals = sum(1 for r in responses if r.approved)
        approved = approvals >= required

        feedback = [item for r in responses for item in r.feedback]
        suggestions = [item for r in responses for item in r.suggestions]
        artifact = request.artifact
        applied: list[str] = []
        if approved and suggestions:
            merge = merge_suggestions(request.artifact, suggestions, self.policy.patches)
            artifact = merge.artifact
            applied = merge.applied
            feedback.extend(merge.unrecognized)
        else:
            feedback.extend(suggestions)

        average = sum(r.confidence for r in responses) / len(responses) if responses else 0.0
        result = ConsensusResult(
            request_id=request.id,
            approved=approved,
            responses=responses,
            artifact=artifact,
            feedback=feedback,
            missing=missing,
            required_approvals=required,
            applied_patches=applied,
            average_confidence=average,
        )
        await self._emit(
            EventType.CONSENSUS_REACHED if approved else EventType.CONSENSUS_NOT_REACHED,
            request.id,
            f"{approvals}/{required} approvals",
            data={"missing": missing, "applied_patches": applied},
        )
        return result

    async def _emit(
        self, event_type: EventType, ref: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        if self.emitter is not None:
            await self.emitter.emit(
                OrchestrationEvent(type=event_type, ref=ref, message=message, data=data or {})
            )
