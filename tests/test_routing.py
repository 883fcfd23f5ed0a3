import pytest

from aris.role_config import Role
from aris.routing import Route, Router
from aris.tasks import Task
from aris.triage import Complexity, ComplexityClassifier, ComplexityScore


def _score(level: Complexity) -> ComplexityScore:
    value = {Complexity.SIMPLE: 0.1, Complexity.MEDIUM: 0.5, Complexity.COMPLEX: 0.9}[level]
    return ComplexityScore(value=value, level=level)


def _route(task: Task, router: Router | None = None) -> Route:
    score = ComplexityClassifier().classify(task)
    return (router or Router()).route(score, task)


def test_simple_task_goes_to_quick_fix() -> None:
    route = _route(Task("Rename variable x to user_count", "rename"))

    assert route.roles == (Role.IMPLEMENTER, Role.EXECUTOR)
    assert route.workflow == "quick-fix"
    assert route.reason == "level:simple"


def test_non_simple_design_task_is_escalated() -> None:
    route = _route(Task("Design a scalable microservices architecture for checkout", "design-architecture"))

    assert route.roles == (Role.DESIGNER, Role.PLANNER, Role.UI_SPECIALIST)
    assert route.workflow == "architecture-design"
    assert route.reason == "override:artifact-design:design"


def test_simple_blueprint_task_uses_blueprint_generation() -> None:
    route = _route(Task("Blueprint", "blueprint"))

    assert route.roles == (Role.DESIGNER, Role.UI_SPECIALIST)
    assert route.workflow == "blueprint-generation"


def test_audit_override_wins_over_code_keyword() -> None:
    route = _route(Task("Check the payment module", "audit-code"))

    assert route.roles == (Role.REVIEWER,)
    assert route.workflow == "code-audit"


def test_execution_override() -> None:
    route = _route(Task("Run the suite", "run-tests"))

    assert route.roles == (Role.EXECUTOR,)
    assert route.workflow == "task-execution"


def test_code_generation_override() -> None:
    route = _route(Task("Produce handlers", "generate-handlers"))

    assert route.roles == (Role.IMPLEMENTER, Role.DESIGNER)
    assert route.workflow == "code-generation"


@pytest.mark.parametrize(
    ("kind", "roles", "reason"),
    [
        ("redesign-checkout", (Role.DESIGNER, Role.UI_SPECIALIST), "override:artifact-design:design"),
        ("blueprints", (Role.DESIGNER, Role.UI_SPECIALIST), "override:artifact-design:blueprint"),
        ("reviewer-pass", (Role.REVIEWER,), "override:audit:review"),
        ("rerun-job", (Role.EXECUTOR,), "override:execution:run"),
        ("CodeGen", (Role.IMPLEMENTER, Role.DESIGNER), "override:code-generation:code"),
    ],
)
def test_override_keywords_match_inside_the_type(kind: str, roles: tuple[str, ...], reason: str) -> None:
    route = Router().route(_score(Complexity.SIMPLE), Task("x", kind))

    assert route.roles == roles
    assert route.reason == reason


def test_capability_tags_extend_override_keywords() -> None:
    router = Router()

    assert router.route(_score(Complexity.SIMPLE), Task("x", "security-scan")).roles == (Role.REVIEWER,)
    assert router.route(_score(Complexity.SIMPLE), Task("x", "deploy")).roles == (Role.EXECUTOR,)


def test_capabilities_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROLE_EXECUTOR_CAPABILITIES", "ship, release")
    router = Router()

    route = router.route(_score(Complexity.MEDIUM), Task("x", "ship-it"))

    assert route.roles == (Role.EXECUTOR,)
    assert route.reason == "override:execution:capability:ship"


def test_worker_capabilities_override_defaults() -> None:
    router = Router(capabilities={"reviewer": ["pentest"]})

    assert router.route(_score(Complexity.SIMPLE), Task("x", "pentest")).roles == (Role.REVIEWER,)
    # Defaults for the reviewer are replaced, not merged.
    assert router.route(_score(Complexity.SIMPLE), Task("x", "security-scan")).workflow == "quick-fix"


@pytest.mark.parametrize(
    ("level", "roles", "workflow"),
    [
        (Complexity.SIMPLE, (Role.IMPLEMENTER, Role.EXECUTOR), "quick-fix"),
        (Complexity.MEDIUM, (Role.DESIGNER, Role.IMPLEMENTER), "standard-workflow"),
        (Complexity.COMPLEX, (Role.DESIGNER, Role.PLANNER, Role.UI_SPECIALIST), "complex-workflow"),
    ],
)
def test_level_fallback(level: Complexity, roles: tuple[str, ...], workflow: str) -> None:
    route = Router().route(_score(level), Task("Something", "misc"))

    assert route.roles == roles
    assert route.workflow == workflow


def test_routing_is_total() -> None:
    router = Router()
    kinds = ["", "???", "misc", "design", "audit", "run", "code", "lint", "ui", "plan"]
    for kind in kinds:
        for level in Complexity:
            route = router.route(_score(level), Task("t", kind))
            assert route.roles
            assert route.workflow


def test_route_requires_roles() -> None:
    with pytest.raises(ValueError):
        Route(roles=(), workflow="quick-fix")
