"""Task event models for observability.

This module defines the data models for task events:
- EventType: Enum of all event types emitted by the task pipeline
- TaskEvent: Structured event with the task identity and details

Events double as the audit trail of the agent: every state transition,
failure, completion and confirmation request is emitted through them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the task pipeline.

    Attributes:
        STATE_TRANSITION: Task moved from one state to another.
        ERROR: A step or workflow failed.
        COMPLETION: Task reached a terminal state.
        CONFIRMATION_REQUESTED: Task suspended waiting for a confirmation token.
        TIMEOUT: A confirmation expired or an operation timed out.
    """

    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    COMPLETION = "completion"
    CONFIRMATION_REQUESTED = "confirmation_requested"
    TIMEOUT = "timeout"


class TaskEvent(BaseModel):
    """Structured event emitted by the task pipeline.

    Attributes:
        event_type: The category of event.
        task_id: Identifier of the affected task.
        kind: Workflow kind of the task (e.g. "deploy").
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Details Field Conventions:
        For STATE_TRANSITION events:
            - from_state / to_state
            - failure_reason: when entering "failed"

        For ERROR events:
            - error_message, error_type
            - step: name of the failing step, when known

        For COMPLETION events:
            - state: "succeeded" or "failed"
            - duration_seconds: time from submission to completion

        For CONFIRMATION_REQUESTED events:
            - expires_at: token expiry (the token itself is never emitted)
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    task_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the task the event belongs to",
    )

    kind: str = Field(
        ...,
        min_length=1,
        description="Workflow kind of the task",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging.

        Example:
            >>> event = TaskEvent(
            ...     event_type=EventType.ERROR,
            ...     task_id="3f2a",
            ...     kind="deploy",
            ...     details={"error_message": "cluster unavailable"},
            ... )
            >>> event.to_log_dict()["event_type"]
            'error'
        """
        return {
            "event_type": self.event_type.value,
            "task_id": self.task_id,
            "kind": self.kind,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
