from datetime import UTC, datetime, timedelta

import pytest

from aris.bus import MessageBus
from aris.config import Settings
from aris.consensus import ConsensusCoordinator, ConsensusPolicy, ConsensusRequest, ConsensusResponse
from aris.errors import ConsensusRequestError
from aris.events import EventEmitter, EventType, OrchestrationEvent
from aris.suggestions import merge_suggestions
from aris.workers import ScriptedWorker, approving_reviewer

ROLES = ["designer", "planner", "ui-specialist", "implementer", "reviewer"]


def _coordinator(settings: Settings, *workers: ScriptedWorker, **kwargs) -> ConsensusCoordinator:
    bus = MessageBus()
    for worker in workers:
        bus.register(worker)
    return ConsensusCoordinator(bus, settings=settings, **kwargs)


def _request(participants: list[str], required: int | None = None, timeout: float = 1.0) -> ConsensusRequest:
    return ConsensusRequest(
        artifact={"name": "checkout-api"},
        participants=participants,
        deadline=datetime.now(UTC) + timedelta(seconds=timeout),
        required_approvals=required,
    )


@pytest.mark.asyncio
async def test_four_of_five_approvals_reach_quorum(test_settings: Settings) -> None:
    workers = [approving_reviewer(role) for role in ROLES[:4]]
    workers.append(approving_reviewer(ROLES[4], approved=False, feedback=["Needs pagination"]))
    coordinator = _coordinator(test_settings, *workers)

    result = await coordinator.resolve(_request(ROLES, required=4))

    assert result.approved
    assert result.approvals == 4
    assert result.missing == []
    assert "Needs pagination" in result.feedback


@pytest.mark.asyncio
async def test_three_of_five_approvals_fall_short(test_settings: Settings) -> None:
    workers = [approving_reviewer(role) for role in ROLES[:3]]
    workers += [approving_reviewer(role, approved=False) for role in ROLES[3:]]
    coordinator = _coordinator(test_settings, *workers)

    result = await coordinator.resolve(_request(ROLES, required=4))

    assert not result.approved
    assert result.approvals == 3
    assert result.artifact == {"name": "checkout-api"}


@pytest.mark.asyncio
async def test_silent_participant_counts_as_missing(test_settings: Settings) -> None:
    workers = [approving_reviewer(role) for role in ROLES[:4]]
    workers.append(ScriptedWorker(ROLES[4], hang=True))
    coordinator = _coordinator(test_settings, *workers)

    strict = await coordinator.resolve(_request(ROLES, required=5, timeout=0.1))
    lenient = await coordinator.resolve(_request(ROLES, required=4, timeout=0.1))

    assert not strict.approved
    assert strict.missing == ["reviewer"]
    assert lenient.approved
    assert lenient.missing == ["reviewer"]
    await coordinator.bus.aclose()


@pytest.mark.asyncio
async def test_unreadable_and_unregistered_participants_are_missing(test_settings: Settings) -> None:
    coordinator = _coordinator(
        test_settings,
        approving_reviewer("designer"),
        ScriptedWorker("planner", default="yes"),
    )

    result = await coordinator.resolve(_request(["designer", "planner", "ghost"], required=1))

    assert result.approved
    assert result.missing == ["planner", "ghost"]
    assert [r.participant for r in result.responses] == ["designer"]


@pytest.mark.asyncio
async def test_past_deadline_marks_everyone_missing(test_settings: Settings) -> None:
    worker = approving_reviewer("designer")
    coordinator = _coordinator(test_settings, worker)

    result = await coordinator.resolve(_request(["designer"], timeout=-1))

    assert not result.approved
    assert result.missing == ["designer"]
    assert worker.call_count == 0


@pytest.mark.asyncio
async def test_request_without_participants_is_rejected(test_settings: Settings) -> None:
    coordinator = _coordinator(test_settings)

    with pytest.raises(ConsensusRequestError):
        await coordinator.resolve(_request([]))
    with pytest.raises(ConsensusRequestError):
        await coordinator.resolve(_request(["designer"], required=0))


@pytest.mark.asyncio
async def test_default_quorum_and_participants(test_settings: Settings) -> None:
    workers = [approving_reviewer(role) for role in test_settings.consensus_participants]
    coordinator = _coordinator(test_settings, *workers)

    result = await coordinator.review_artifact({"name": "orders"})

    assert result.required_approvals == 3
    assert result.approved
    assert result.average_confidence == pytest.approx(0.85)


@pytest.mark.parametrize(("count", "required"), [(1, 1), (3, 3), (5, 4), (10, 7)])
def test_required_approvals_ratio(count: int, required: int) -> None:
    assert ConsensusPolicy(approval_ratio=0.7).required_approvals(count) == required


@pytest.mark.asyncio
async def test_approved_suggestions_are_merged(test_settings: Settings) -> None:
    coordinator = _coordinator(
        test_settings,
        approving_reviewer("designer", suggestions=["Add `profile_image_url` field to the user response"]),
        approving_reviewer("planner", suggestions=["Add caching", "Rewrite it in a weekend"]),
    )

    result = await coordinator.resolve(_request(["designer", "planner"], required=2))

    assert result.artifact["schema"]["properties"]["profile_image_url"] == {"type": "string"}
    assert result.artifact["performance"]["caching"] == {"enabled": True, "ttl": 300}
    assert result.applied_patches == ["field-addition", "caching"]
    assert "Rewrite it in a weekend" in result.feedback


@pytest.mark.asyncio
async def test_rejected_artifact_keeps_suggestions_as_feedback(test_settings: Settings) -> None:
    coordinator = _coordinator(
        test_settings,
        approving_reviewer("designer", approved=False, suggestions=["Add health checks"]),
    )

    result = await coordinator.resolve(_request(["designer"]))

    assert not result.approved
    assert result.artifact == {"name": "checkout-api"}
    assert result.feedback == ["Add health checks"]
    assert result.applied_patches == []


@pytest.mark.asyncio
async def test_consensus_events(test_settings: Settings) -> None:
    events: list[OrchestrationEvent] = []
    emitter = EventEmitter()
    emitter.on_event(events.append)
    coordinator = _coordinator(test_settings, approving_reviewer("designer", approved=False), emitter=emitter)

    request = _request(["designer"])
    await coordinator.resolve(request)

    assert [e.type for e in events] == [EventType.CONSENSUS_REQUESTED, EventType.CONSENSUS_NOT_REACHED]
    assert events[1].ref == request.id


def test_merge_is_idempotent() -> None:
    suggestions = ["Add rate limiting", "Enable retries", "Add property nickname", "Add health-check endpoint"]

    once = merge_suggestions({"name": "users"}, suggestions)
    twice = merge_suggestions(once.artifact, suggestions)

    assert once.artifact == twice.artifact
    assert once.unrecognized == []
    assert once.artifact["schema"]["properties"]["nickname"] == {"type": "string"}


def test_merge_keeps_existing_settings() -> None:
    artifact = {"security": {"rate_limiting": {"enabled": True, "requests_per_minute": 10}}}

    outcome = merge_suggestions(artifact, ["Add rate limiting"])

    assert outcome.artifact["security"]["rate_limiting"]["requests_per_minute"] == 10
    assert artifact == {"security": {"rate_limiting": {"enabled": True, "requests_per_minute": 10}}}


def test_merge_on_non_mapping_artifact() -> None:
    outcome = merge_suggestions("plain text blueprint", ["Add caching"])

    assert outcome.artifact == "plain text blueprint"
    assert outcome.unrecognized == ["Add caching"]


def test_response_parsing() -> None:
    assert ConsensusResponse.from_data("designer", {"approved": "yes"}) is None
    assert ConsensusResponse.from_data("designer", ["approved"]) is None

    response = ConsensusResponse.from_data(
        "designer", {"approved": True, "feedback": "Fine", "confidence": 3}
    )

    assert response is not None
    assert response.feedback == ["Fine"]
    assert response.confidence == 1.0
