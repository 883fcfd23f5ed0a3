"""
Agent Orchestration Core

This package classifies and routes tasks to worker roles, runs dependency-ordered
workflows, coordinates quorum approval of design artifacts and learns review rules
from accepted corrections.
"""

__version__ = "0.1.0"

# Configuration
from aris.config import Settings

# Consensus
from aris.consensus import (
    ConsensusCoordinator,
    ConsensusPolicy,
    ConsensusRequest,
    ConsensusResponse,
    ConsensusResult,
)

# Errors
from aris.errors import OrchestrationError

# Learning
from aris.learning import CodeDiff, LearningEngine, Rule, RuleCategory, RuleStore

# Messaging and workers
from aris.bus import Message, MessageBus, MessageType
from aris.workers import HttpWorker, ScriptedWorker, Worker, WorkerResult

# Submission API
from aris.orchestrator import DispatchOutcome, Orchestrator, build_orchestrator

# Role configuration and routing
from aris.role_config import Role, RoleConfig
from aris.routing import Route, Router

# Tasks and triage
from aris.tasks import Task, TaskPriority, TaskRegistry, TaskStatus
from aris.triage import Complexity, ComplexityClassifier, ComplexityScore

# Workflows
from aris.workflow import RunSnapshot, RunStatus, WorkflowEngine, WorkflowStep, WorkflowTemplate

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    # Consensus
    "ConsensusCoordinator",
    "ConsensusPolicy",
    "ConsensusRequest",
    "ConsensusResponse",
    "ConsensusResult",
    # Errors
    "OrchestrationError",
    # Learning
    "CodeDiff",
    "LearningEngine",
    "Rule",
    "RuleCategory",
    "RuleStore",
    # Messaging
    "Message",
    "MessageBus",
    "MessageType",
    "HttpWorker",
    "ScriptedWorker",
    "Worker",
    "WorkerResult",
    # Submission API
    "DispatchOutcome",
    "Orchestrator",
    "build_orchestrator",
    # Roles and routing
    "Role",
    "RoleConfig",
    "Route",
    "Router",
    # Tasks
    "Task",
    "TaskPriority",
    "TaskRegistry",
    "TaskStatus",
    "Complexity",
    "ComplexityClassifier",
    "ComplexityScore",
    # Workflows
    "RunSnapshot",
    "RunStatus",
    "WorkflowEngine",
    "WorkflowStep",
    "WorkflowTemplate",
]
