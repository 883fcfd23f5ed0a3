"""Error types and helpers for the orchestration core.

Every failure that reaches a caller names the component it came from, the
task/run/request id it concerns and a readable cause.
"""

from __future__ import annotations

import re

import click


class OrchestrationError(click.ClickException):
    """Base class for failures surfaced to callers."""

    component = "core"

    def __init__(self, cause: str, *, ref: str | None = None, component: str | None = None) -> None:
        if component:
            self.component = component
        self.ref = ref
        self.cause = cause
        target = f" {ref}" if ref else ""
        super().__init__(f"[{self.component}{target}] {cause}")


class TaskNotFoundError(OrchestrationError):
    component = "tasks"


class TaskDependencyError(OrchestrationError):
    """Raised when a task's dependencies are unknown or not yet completed."""

    component = "tasks"


class TemplateValidationError(OrchestrationError):
    """Raised at registration for malformed or cyclic workflow templates."""

    component = "workflow"


class UnknownTemplateError(OrchestrationError):
    component = "workflow"


class UnknownRunError(OrchestrationError):
    component = "workflow"


class WorkflowRunError(OrchestrationError):
    """A workflow run ended in failure; carries the last worker error."""

    component = "workflow"

    def __init__(self, cause: str, *, ref: str | None = None, step: str | None = None) -> None:
        self.step = step
        super().__init__(cause, ref=ref)


class ConsensusRequestError(OrchestrationError):
    component = "consensus"


class RulePatternError(OrchestrationError):
    """A learned pattern failed validation or could not be compiled."""

    component = "learning"


class SchemaNotInitializedError(OrchestrationError):
    """Raised when the rule-store schema/migrations have not been applied."""

    component = "knowledge"


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Rule store schema is not initialized{table_hint}.",
            "Run: `alembic upgrade head`",
        ]
    )
