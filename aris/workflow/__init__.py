from .base import (
    FailureAction,
    RetryPolicy,
    RunSnapshot,
    RunStatus,
    StepKind,
    StepState,
    StepStatus,
    WorkflowStep,
    WorkflowTemplate,
    find_cycle,
)
from .engine import WorkflowEngine, WorkflowRun
from .templates import DEFAULT_TEMPLATES

__all__ = [
    "DEFAULT_TEMPLATES",
    "FailureAction",
    "RetryPolicy",
    "RunSnapshot",
    "RunStatus",
    "StepKind",
    "StepState",
    "StepStatus",
    "WorkflowEngine",
    "WorkflowRun",
    "WorkflowStep",
    "WorkflowTemplate",
    "find_cycle",
]
