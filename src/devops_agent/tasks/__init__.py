"""Agent task pipeline: task models, state machine, steps and workflows."""

from src.devops_agent.tasks.fanout import Outcome, gather_bounded, sorted_outcomes
from src.devops_agent.tasks.machine import (
    InMemoryTaskRepository,
    InvalidTransitionError,
    TaskNotFoundError,
    TaskRepository,
    TaskStateMachine,
    VersionConflictError,
)
from src.devops_agent.tasks.models import (
    AgentTask,
    ConfirmationToken,
    FailureReason,
    StateTransition,
    TaskKind,
    TaskState,
)
from src.devops_agent.tasks.pipeline import AgentTaskPipeline
from src.devops_agent.tasks.steps import (
    Step,
    StepCapability,
    StepContext,
    StepResult,
    StepStatus,
)
from src.devops_agent.tasks.workflows import Workflow, WorkflowServices, build_workflows

__all__ = [
    "AgentTask",
    "AgentTaskPipeline",
    "ConfirmationToken",
    "FailureReason",
    "InMemoryTaskRepository",
    "InvalidTransitionError",
    "Outcome",
    "StateTransition",
    "Step",
    "StepCapability",
    "StepContext",
    "StepResult",
    "StepStatus",
    "TaskKind",
    "TaskNotFoundError",
    "TaskRepository",
    "TaskState",
    "TaskStateMachine",
    "VersionConflictError",
    "Workflow",
    "WorkflowServices",
    "build_workflows",
    "gather_bounded",
    "sorted_outcomes",
]
