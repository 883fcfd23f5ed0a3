"""
Task routing: complexity level + task type -> worker roles and workflow template.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass

from .role_config import DEFAULT_ROLE_CONFIG, Role, resolve_role
from .tasks import Task
from .triage import Complexity, ComplexityScore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """Ordered worker roles plus the workflow template that drives them."""

    roles: tuple[str, ...]
    workflow: str
    reason: str = ""

    def __post_init__(self) -> None:
        if not self.roles:
            raise ValueError("Route requires at least one role")

    def to_dict(self) -> dict:
        return {"roles": list(self.roles), "workflow": self.workflow, "reason": self.reason}


@dataclass(frozen=True)
class OverrideRule:
    """Routes any task type containing one of ``keywords`` to a fixed team.

    ``escalated_roles``/``escalated_workflow`` replace the team when the task
    is not simple. With ``match_capabilities`` the lead role's declared
    capability tags act as extra keywords.
    """

    name: str
    keywords: tuple[str, ...]
    roles: tuple[str, ...]
    workflow: str
    escalated_roles: tuple[str, ...] = ()
    escalated_workflow: str | None = None
    match_capabilities: bool = False

    def resolve(self, level: Complexity) -> tuple[tuple[str, ...], str]:
        if self.escalated_roles and level != Complexity.SIMPLE:
            return self.escalated_roles, self.escalated_workflow or self.workflow
        return self.roles, self.workflow


DEFAULT_OVERRIDES: tuple[OverrideRule, ...] = (
    OverrideRule(
        name="artifact-design",
        keywords=("design", "blueprint"),
        roles=(Role.DESIGNER, Role.UI_SPECIALIST),
        workflow="blueprint-generation",
        escalated_roles=(Role.DESIGNER, Role.PLANNER, Role.UI_SPECIALIST),
        escalated_workflow="architecture-design",
    ),
    OverrideRule(
        name="audit",
        keywords=("audit", "review"),
        roles=(Role.REVIEWER,),
        workflow="code-audit",
        match_capabilities=True,
    ),
    OverrideRule(
        name="execution",
        keywords=("execute", "run"),
        roles=(Role.EXECUTOR,),
        workflow="task-execution",
        match_capabilities=True,
    ),
    OverrideRule(
        name="code-generation",
        keywords=("code", "generate"),
        roles=(Role.IMPLEMENTER, Role.DESIGNER),
        workflow="code-generation",
    ),
)

DEFAULT_LEVEL_ROUTES: dict[Complexity, Route] = {
    Complexity.SIMPLE: Route(
        roles=(Role.IMPLEMENTER, Role.EXECUTOR), workflow="quick-fix", reason="level:simple"
    ),
    Complexity.MEDIUM: Route(
        roles=(Role.DESIGNER, Role.IMPLEMENTER),
        workflow="standard-workflow",
        reason="level:medium",
    ),
    Complexity.COMPLEX: Route(
        roles=(Role.DESIGNER, Role.PLANNER, Role.UI_SPECIALIST),
        workflow="complex-workflow",
        reason="level:complex",
    ),
}

_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def _normalize(task_type: str) -> str:
    return "-".join(t for t in _TOKEN_SPLIT_RE.split((task_type or "").lower()) if t)


class Router:
    """Maps a complexity score and task type to a Route. Total by construction."""

    def __init__(
        self,
        overrides: Sequence[OverrideRule] = DEFAULT_OVERRIDES,
        level_routes: Mapping[Complexity, Route] | None = None,
        capabilities: Mapping[str, Collection[str]] | None = None,
    ) -> None:
        self._overrides = tuple(overrides)
        self._level_routes = dict(DEFAULT_LEVEL_ROUTES)
        if level_routes:
            self._level_routes.update(level_routes)
        self._capabilities: dict[str, tuple[str, ...]] = {
            role: tuple(resolve_role(role).get("capabilities", ())) for role in DEFAULT_ROLE_CONFIG
        }
        if capabilities:
            for role, tags in capabilities.items():
                if tags:
                    self._capabilities[str(role)] = tuple(tags)

    def route(self, score: ComplexityScore, task: Task) -> Route:
        kind = _normalize(task.task_type)

        for rule in self._overrides:
            matched = self._match(rule, kind)
            if matched:
                roles, workflow = rule.resolve(score.level)
                route = Route(
                    roles=tuple(str(r) for r in roles),
                    workflow=workflow,
                    reason=f"override:{rule.name}:{matched}",
                )
                logger.debug("Task %s routed by override %s", task.id, rule.name)
                return route

        route = self._level_routes[score.level]
        return Route(roles=tuple(str(r) for r in route.roles), workflow=route.workflow, reason=route.reason)

    def _match(self, rule: OverrideRule, kind: str) -> str | None:
        """Keywords and capability tags match anywhere in the normalized type."""
        if not kind:
            return None
        for keyword in rule.keywords:
            if keyword in kind:
                return keyword
        if rule.match_capabilities:
            lead = str(rule.roles[0])
            for tag in self._capabilities.get(lead, ()):
                normalized = _normalize(tag)
                if normalized and normalized in kind:
                    return f"capability:{normalized}"
        return None
