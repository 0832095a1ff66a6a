"""Agent task models.

This module defines the data models for the task state machine:
- TaskKind: Workflows the pipeline can run
- TaskState: States an AgentTask moves through
- FailureReason: Why a task ended in ``failed``
- ConfirmationToken: Single-use token gating destructive actions
- StateTransition: Record of a state transition with timestamp and details
- AgentTask: Complete state of one unit of work
- TaskFailure: The error that failed a task, kept without its traceback
- VALID_TRANSITIONS: Map defining allowed state transitions
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, field_validator

from src.devops_agent.orchestration.models import parse_deployment_id


class TaskKind(str, Enum):
    """Workflow kinds run by the task pipeline."""

    CODE_REVIEW = "code_review"
    TEST_WRITER = "test_writer"
    DEPLOY = "deploy"
    ROLLBACK = "rollback"
    MONITOR = "monitor"
    SECURITY = "security"
    COST = "cost"
    INCIDENT = "incident"


class TaskState(str, Enum):
    """States of an AgentTask.

    State Flow:
        queued → running → succeeded | failed | suspended
        suspended → running (matching confirmation)
        suspended → failed (expired confirmation or cancel)

    SUCCEEDED and FAILED are terminal and never retried automatically.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUSPENDED = "suspended"


class FailureReason(str, Enum):
    """Reported reason for a failed task.

    Attributes:
        CONFIRMATION_EXPIRED: The confirmation token outlived its TTL.
        CANCELLED: The task was cancelled while suspended.
        NO_FILES_AVAILABLE: TestWriter could not fetch any file.
        ERROR: A critical step raised.
    """

    CONFIRMATION_EXPIRED = "confirmation_expired"
    CANCELLED = "cancelled"
    NO_FILES_AVAILABLE = "no_files_available"
    ERROR = "error"


class ConfirmationToken(BaseModel):
    """Single-use confirmation token with a TTL.

    A token is expired once ``now >= issued_at + ttl_seconds``.
    """

    value: str = Field(..., min_length=1)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: int = Field(..., ge=1)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.ttl_seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class StateTransition(BaseModel):
    """Record of a task state transition."""

    from_state: Optional[TaskState] = Field(
        default=None,
        description="State before the transition; None for task creation",
    )

    to_state: TaskState = Field(
        ...,
        description="State after the transition",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the transition occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Optional metadata about the transition",
    )


class AgentTask(BaseModel):
    """Complete state of one unit of pipeline work.

    ``context`` holds step outputs so a suspended task can resume from
    ``next_step`` without re-running earlier steps. ``version`` is bumped on
    every update for optimistic locking in the task repository.
    """

    id: str = Field(..., min_length=1)

    kind: TaskKind

    payload: Dict[str, Any] = Field(default_factory=dict)

    state: TaskState = TaskState.QUEUED

    confirmation: Optional[ConfirmationToken] = None

    result: Optional[Dict[str, Any]] = None

    error: Optional[str] = None

    failure_reason: Optional[FailureReason] = None

    history: List[StateTransition] = Field(default_factory=list)

    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Outputs of completed steps, keyed by output name",
    )

    next_step: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    version: int = Field(default=1, ge=1)

    @property
    def confirmation_token(self) -> Optional[str]:
        return self.confirmation.value if self.confirmation is not None else None

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)

    def to_summary(self) -> Dict[str, Any]:
        """Public view of the task; never includes the confirmation token."""
        summary: Dict[str, Any] = {
            "task_id": self.id,
            "kind": self.kind.value,
            "state": self.state.value,
            "result": self.result,
            "error": self.error,
            "failure_reason": (
                self.failure_reason.value if self.failure_reason else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.state == TaskState.SUSPENDED and self.confirmation is not None:
            summary["expires_at"] = self.confirmation.expires_at.isoformat()
        return summary


VALID_TRANSITIONS: Dict[TaskState, List[TaskState]] = {
    TaskState.QUEUED: [TaskState.RUNNING, TaskState.FAILED],
    TaskState.RUNNING: [
        TaskState.SUCCEEDED,
        TaskState.FAILED,
        TaskState.SUSPENDED,
    ],
    TaskState.SUSPENDED: [TaskState.RUNNING, TaskState.FAILED],
    # Terminal: never retried automatically
    TaskState.SUCCEEDED: [],
    TaskState.FAILED: [],
}


@dataclass(frozen=True)
class TaskFailure:
    """Class, message and details of the exception that failed a task."""

    error_type: Type[BaseException]
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "TaskFailure":
        return cls(
            error_type=type(exc),
            message=str(exc),
            details=dict(getattr(exc, "details", None) or {}),
        )


def is_valid_transition(from_state: TaskState, to_state: TaskState) -> bool:
    """Check a transition against VALID_TRANSITIONS.

    Example:
        >>> is_valid_transition(TaskState.SUSPENDED, TaskState.RUNNING)
        True
        >>> is_valid_transition(TaskState.FAILED, TaskState.RUNNING)
        False
    """
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def is_terminal_state(state: TaskState) -> bool:
    return len(VALID_TRANSITIONS.get(state, [])) == 0


# -----------------------------------------------------------------------------
# Workflow payloads
# -----------------------------------------------------------------------------


def _validate_repository(v: str) -> str:
    parts = v.split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValueError("repository must be in format owner/repo")
    return v


def _validate_deployment_id(v: str) -> str:
    parse_deployment_id(v)
    return v


class CodeReviewPayload(BaseModel):
    repository: str
    pr_number: int = Field(..., gt=0)
    llm_model: Optional[str] = None

    @field_validator("repository")
    @classmethod
    def check_repository(cls, v: str) -> str:
        return _validate_repository(v)


class WriteTestsPayload(BaseModel):
    """Test generation request.

    Without ``changed_files`` the files a pull request adds or modifies are
    listed from ``pr_number`` and read at the pull request head. Files are
    otherwise fetched from ``ref`` when given, else the default branch.
    """

    repository: str
    pr_number: Optional[int] = Field(default=None, gt=0)
    changed_files: List[str] = Field(default_factory=list)
    ref: Optional[str] = None
    llm_model: Optional[str] = None

    @field_validator("repository")
    @classmethod
    def check_repository(cls, v: str) -> str:
        return _validate_repository(v)

    @field_validator("changed_files")
    @classmethod
    def dedupe_files(cls, v: List[str]) -> List[str]:
        """Drop blanks and duplicates, keeping first occurrence order."""
        seen: Dict[str, None] = {}
        for path in v:
            if path and path.strip():
                seen.setdefault(path.strip(), None)
        return list(seen)


class DeployPayload(BaseModel):
    """Deploy request.

    ``production`` maps to namespace ``prod`` with 3 replicas; any other
    environment maps to ``staging`` with 1 replica. ``replicas`` overrides
    the environment default.
    """

    repository: str
    image_tag: str = Field(..., min_length=1)
    environment: str = "staging"
    replicas: Optional[int] = Field(default=None, ge=0)

    @field_validator("repository")
    @classmethod
    def check_repository(cls, v: str) -> str:
        return _validate_repository(v)

    @property
    def name(self) -> str:
        return self.repository.split("/")[1]

    @property
    def namespace(self) -> str:
        return "prod" if self.environment == "production" else "staging"

    @property
    def target_replicas(self) -> int:
        if self.replicas is not None:
            return self.replicas
        return 3 if self.environment == "production" else 1


class RollbackPayload(BaseModel):
    deployment_id: str
    rollback_strategy: str = "previous_version"
    reason: Optional[str] = None
    confirmation_required: bool = True

    @field_validator("deployment_id")
    @classmethod
    def check_deployment_id(cls, v: str) -> str:
        return _validate_deployment_id(v)


class MonitorPayload(BaseModel):
    deployment_id: str

    @field_validator("deployment_id")
    @classmethod
    def check_deployment_id(cls, v: str) -> str:
        return _validate_deployment_id(v)


class SecurityPayload(BaseModel):
    repository: str
    pr_number: int = Field(..., gt=0)
    llm_model: Optional[str] = None

    @field_validator("repository")
    @classmethod
    def check_repository(cls, v: str) -> str:
        return _validate_repository(v)


class CostPayload(BaseModel):
    deployment_id: str
    llm_model: Optional[str] = None

    @field_validator("deployment_id")
    @classmethod
    def check_deployment_id(cls, v: str) -> str:
        return _validate_deployment_id(v)


class IncidentPayload(BaseModel):
    deployment_id: str
    incident_type: str = Field(..., min_length=1)
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    auto_remediation: bool = False
    llm_model: Optional[str] = None

    @field_validator("deployment_id")
    @classmethod
    def check_deployment_id(cls, v: str) -> str:
        return _validate_deployment_id(v)
