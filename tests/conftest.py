"""Shared test fixtures and configuration for pytest."""

from pathlib import Path
from typing import Any

import pytest

from aris.config import Settings
from aris.role_config import Role
from aris.tasks import Task
from aris.workers import ScriptedWorker


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small timeouts and the in-memory knowledge backend."""
    return Settings(
        knowledge_backend="memory",
        worker_timeout=2.0,
        consensus_timeout=2.0,
        max_retries=1,
        retry_delay=0.0,
        max_in_flight=4,
        redis_events_enabled=False,
        worker_base_url=None,
    )


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """File-backed SQLite URL for the SQL knowledge store."""
    return f"sqlite+aiosqlite:///{tmp_path / 'knowledge.db'}"


@pytest.fixture
def mock_redis_url() -> str:
    """Mock Redis URL for testing."""
    return "redis://localhost:6379/1"


def echo_reply(task: Task, context: dict[str, Any]) -> dict[str, Any]:
    return {"action": task.task_type, "step": context.get("step")}


APPROVAL = {"approved": True, "feedback": ["Looks good"], "suggestions": [], "confidence": 0.9}


@pytest.fixture
def fleet() -> dict[str, ScriptedWorker]:
    """One scripted worker per built-in role; every role approves artifacts."""
    return {
        role.value: ScriptedWorker(role, replies={"review-artifact": APPROVAL}, default=echo_reply)
        for role in Role
    }
