"""
Built-in workflow templates, registered by every engine at startup.
"""

from __future__ import annotations

from ..role_config import Role
from .base import FailureAction, RetryPolicy, StepKind, WorkflowStep, WorkflowTemplate

QUICK_FIX = WorkflowTemplate(
    name="quick-fix",
    description="Small edit followed by a verification run",
    steps=(
        WorkflowStep("implement", Role.IMPLEMENTER, action="edit-code", description="Apply the change"),
        WorkflowStep(
            "verify",
            Role.EXECUTOR,
            depends_on={"implement"},
            action="run-tests",
            description="Run the test suite against the change",
        ),
    ),
)

STANDARD_WORKFLOW = WorkflowTemplate(
    name="standard-workflow",
    description="Design, implement, then review against learned rules",
    steps=(
        WorkflowStep("design", Role.DESIGNER, action="generate-blueprint", description="Sketch the design"),
        WorkflowStep(
            "implement",
            Role.IMPLEMENTER,
            depends_on={"design"},
            action="generate-code",
            description="Implement the design",
        ),
        WorkflowStep(
            "review",
            Role.REVIEWER,
            depends_on={"implement"},
            action="audit-code",
            kind=StepKind.REVIEW,
            on_failure=FailureAction.SKIP,
            description="Review the implementation",
        ),
    ),
)

COMPLEX_WORKFLOW = WorkflowTemplate(
    name="complex-workflow",
    description="Consensus-approved blueprint, then planning and UI design in parallel",
    steps=(
        WorkflowStep(
            "blueprint",
            Role.DESIGNER,
            action="generate-blueprint",
            kind=StepKind.CONSENSUS,
            description="Produce a blueprint and put it to the team",
        ),
        WorkflowStep(
            "plan", Role.PLANNER, depends_on={"blueprint"}, action="create-plan", description="Plan milestones"
        ),
        WorkflowStep(
            "ui", Role.UI_SPECIALIST, depends_on={"blueprint"}, action="design-ui", description="Design the UI"
        ),
    ),
)

BLUEPRINT_GENERATION = WorkflowTemplate(
    name="blueprint-generation",
    description="Blueprint with consensus approval, then component design",
    steps=(
        WorkflowStep(
            "blueprint",
            Role.DESIGNER,
            action="generate-blueprint",
            kind=StepKind.CONSENSUS,
            description="Generate architecture blueprint from requirements",
        ),
        WorkflowStep(
            "components",
            Role.UI_SPECIALIST,
            depends_on={"blueprint"},
            action="design-components",
            description="Design UI components for the blueprint",
        ),
    ),
)

ARCHITECTURE_DESIGN = WorkflowTemplate(
    name="architecture-design",
    description="Architecture with consensus approval, then milestones and UI in parallel",
    steps=(
        WorkflowStep(
            "architecture",
            Role.DESIGNER,
            action="design-architecture",
            kind=StepKind.CONSENSUS,
            description="Design the system architecture",
        ),
        WorkflowStep(
            "milestones",
            Role.PLANNER,
            depends_on={"architecture"},
            action="plan-milestones",
            description="Break the architecture into milestones",
        ),
        WorkflowStep(
            "ui",
            Role.UI_SPECIALIST,
            depends_on={"architecture"},
            action="design-ui",
            description="Design the user-facing layer",
        ),
    ),
)

CODE_GENERATION = WorkflowTemplate(
    name="code-generation",
    description="Generate code, then check it against the design",
    steps=(
        WorkflowStep("generate", Role.IMPLEMENTER, action="generate-code", description="Generate code files"),
        WorkflowStep(
            "conformance",
            Role.DESIGNER,
            depends_on={"generate"},
            action="check-design-conformance",
            on_failure=FailureAction.SKIP,
            description="Check the generated code against the design",
        ),
    ),
)

CODE_AUDIT = WorkflowTemplate(
    name="code-audit",
    description="Audit code with learned rules attached",
    steps=(
        WorkflowStep(
            "audit",
            Role.REVIEWER,
            action="audit-code",
            kind=StepKind.REVIEW,
            description="Audit code for quality and best practices",
        ),
    ),
)

TASK_EXECUTION = WorkflowTemplate(
    name="task-execution",
    description="Single execution step",
    steps=(WorkflowStep("execute", Role.EXECUTOR, action="execute-task", description="Execute the task"),),
)

BLUEPRINT_TO_CODE = WorkflowTemplate(
    name="blueprint-to-code",
    description="Blueprint, code generation and audit",
    steps=(
        WorkflowStep(
            "blueprint",
            Role.DESIGNER,
            action="generate-blueprint",
            kind=StepKind.CONSENSUS,
            description="Generate architecture blueprint from requirements",
        ),
        WorkflowStep(
            "code",
            Role.IMPLEMENTER,
            depends_on={"blueprint"},
            action="generate-code",
            description="Generate code files from blueprint",
        ),
        WorkflowStep(
            "audit",
            Role.REVIEWER,
            depends_on={"code"},
            action="audit-code",
            kind=StepKind.REVIEW,
            description="Audit generated code for quality and best practices",
        ),
    ),
)

CI_CD_PIPELINE = WorkflowTemplate(
    name="ci-cd-pipeline",
    description="Build, test and audit in parallel, deploy, monitor",
    retry=RetryPolicy(max_retries=1),
    steps=(
        WorkflowStep("create-project", Role.PLANNER, description="Initialize CI/CD pipeline project"),
        WorkflowStep(
            "setup-environment",
            Role.EXECUTOR,
            depends_on={"create-project"},
            description="Setup CI/CD environment and tools",
        ),
        WorkflowStep(
            "build-project",
            Role.EXECUTOR,
            depends_on={"setup-environment"},
            description="Build project in CI environment",
        ),
        WorkflowStep(
            "run-tests", Role.EXECUTOR, depends_on={"build-project"}, description="Run comprehensive test suite"
        ),
        WorkflowStep(
            "audit-code",
            Role.REVIEWER,
            depends_on={"build-project"},
            kind=StepKind.REVIEW,
            description="Audit code quality and security",
        ),
        WorkflowStep(
            "deploy-application",
            Role.EXECUTOR,
            depends_on={"run-tests", "audit-code"},
            description="Deploy to staging/production environment",
        ),
        WorkflowStep(
            "monitor-process",
            Role.EXECUTOR,
            depends_on={"deploy-application"},
            on_failure=FailureAction.SKIP,
            description="Monitor deployment and application metrics",
        ),
    ),
)

DEFAULT_TEMPLATES: tuple[WorkflowTemplate, ...] = (
    QUICK_FIX,
    STANDARD_WORKFLOW,
    COMPLEX_WORKFLOW,
    BLUEPRINT_GENERATION,
    ARCHITECTURE_DESIGN,
    CODE_GENERATION,
    CODE_AUDIT,
    TASK_EXECUTION,
    BLUEPRINT_TO_CODE,
    CI_CD_PIPELINE,
)
