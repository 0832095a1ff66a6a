"""Task state machine and repository.

The TaskStateMachine validates transitions against VALID_TRANSITIONS,
records a timestamped StateTransition for each, stores failure details,
and persists through a TaskRepository with optimistic locking.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from src.devops_agent.errors import ConflictError, DevOpsAgentError, NotFoundError
from src.devops_agent.tasks.models import (
    AgentTask,
    FailureReason,
    StateTransition,
    TaskKind,
    TaskState,
    is_valid_transition,
)


logger = logging.getLogger(__name__)


class InvalidTransitionError(DevOpsAgentError):
    """Raised when a transition is not allowed from the current state.

    Attributes:
        from_state: The current state.
        to_state: The attempted target state.
    """

    public_message = "Task is not in a state that allows this operation"

    def __init__(
        self,
        from_state: TaskState,
        to_state: TaskState,
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message
            or f"Invalid transition from {from_state.value} to {to_state.value}",
            details={"from_state": from_state.value, "to_state": to_state.value},
        )


class TaskNotFoundError(NotFoundError):
    """Raised when a task id is unknown.

    Attributes:
        task_id: The task id that was not found.
    """

    public_message = "Task not found"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}", details={"task_id": task_id})


class VersionConflictError(ConflictError):
    """Raised when optimistic locking detects a concurrent update.

    Attributes:
        task_id: The task with the conflict.
        expected_version: The version that was expected.
    """

    def __init__(self, task_id: str, expected_version: int):
        self.task_id = task_id
        self.expected_version = expected_version
        super().__init__(
            f"Version conflict for task {task_id}: expected {expected_version}",
            details={"task_id": task_id, "expected_version": expected_version},
        )


@runtime_checkable
class TaskRepository(Protocol):
    """Persistence for AgentTasks with optimistic locking."""

    async def save(self, task: AgentTask) -> None:
        ...

    async def get(self, task_id: str) -> Optional[AgentTask]:
        ...

    async def list_by_state(self, state: TaskState) -> List[AgentTask]:
        ...

    async def update_with_version(self, task: AgentTask) -> bool:
        """Store ``task`` only if the stored version is ``task.version - 1``."""
        ...

    async def delete(self, task_id: str) -> None:
        """Forget a task; unknown ids are ignored."""
        ...


class InMemoryTaskRepository:
    """TaskRepository held in process memory.

    Tasks are copied on the way in and out so callers never share a
    mutable instance with the store.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, AgentTask] = {}

    async def save(self, task: AgentTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get(self, task_id: str) -> Optional[AgentTask]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    async def list_by_state(self, state: TaskState) -> List[AgentTask]:
        return [
            t.model_copy(deep=True) for t in self._tasks.values() if t.state == state
        ]

    async def update_with_version(self, task: AgentTask) -> bool:
        current = self._tasks.get(task.id)
        if current is None or current.version != task.version - 1:
            return False
        self._tasks[task.id] = task.model_copy(deep=True)
        return True

    async def delete(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)


class TaskStateMachine:
    """State machine over AgentTasks.

    Invariants:
    - Only transitions listed in VALID_TRANSITIONS are applied
    - Every transition is recorded with a UTC timestamp in ``history``
    - Entering FAILED always sets ``failure_reason`` and ``error``
    - Every update bumps ``version``

    Example:
        >>> machine = TaskStateMachine(InMemoryTaskRepository())
        >>> task = await machine.create(TaskKind.DEPLOY, {"repository": "org/api"})
        >>> task = await machine.transition(task.id, TaskState.RUNNING)
    """

    def __init__(self, repository: TaskRepository):
        self.repository = repository

    async def create(self, kind: TaskKind, payload: Dict[str, Any]) -> AgentTask:
        now = datetime.now(timezone.utc)
        task = AgentTask(
            id=uuid.uuid4().hex,
            kind=kind,
            payload=payload,
            state=TaskState.QUEUED,
            history=[StateTransition(to_state=TaskState.QUEUED, timestamp=now)],
            created_at=now,
            updated_at=now,
        )

        logger.info(
            "Creating task",
            extra={"task_id": task.id, "kind": kind.value},
        )
        await self.repository.save(task)
        return task

    async def get(self, task_id: str) -> AgentTask:
        task = await self.repository.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def transition(
        self,
        task_id: str,
        to_state: TaskState,
        details: Optional[Dict[str, Any]] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> AgentTask:
        """Move a task to ``to_state``.

        Args:
            task_id: The task to transition.
            to_state: The target state.
            details: Metadata recorded on the transition. For FAILED,
                     ``error`` and ``failure_reason`` are read from here.
            updates: Other AgentTask fields to set in the same write.

        Raises:
            TaskNotFoundError: If the task doesn't exist.
            InvalidTransitionError: If the transition is not valid.
            VersionConflictError: If a concurrent update occurred.
        """
        details = dict(details or {})
        task = await self.get(task_id)
        from_state = task.state

        if not is_valid_transition(from_state, to_state):
            logger.warning(
                "Invalid task transition attempted",
                extra={
                    "task_id": task_id,
                    "from_state": from_state.value,
                    "to_state": to_state.value,
                },
            )
            raise InvalidTransitionError(from_state, to_state)

        now = datetime.now(timezone.utc)
        fields: Dict[str, Any] = dict(updates or {})

        if to_state == TaskState.FAILED:
            reason = FailureReason(details.get("failure_reason", FailureReason.ERROR))
            details["failure_reason"] = reason.value
            fields["failure_reason"] = reason
            fields["error"] = details.get("error") or reason.value
            fields["confirmation"] = None
        elif to_state == TaskState.RUNNING and from_state == TaskState.SUSPENDED:
            # Tokens are single-use
            fields["confirmation"] = None

        fields.update(
            state=to_state,
            history=task.history
            + [
                StateTransition(
                    from_state=from_state,
                    to_state=to_state,
                    timestamp=now,
                    details=details,
                )
            ],
            updated_at=now,
            version=task.version + 1,
        )
        updated = task.model_copy(update=fields)

        logger.info(
            "Transitioning task",
            extra={
                "task_id": task_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "version": updated.version,
            },
        )

        if not await self.repository.update_with_version(updated):
            raise VersionConflictError(task_id, task.version)
        return updated

    async def update(self, task_id: str, **fields: Any) -> AgentTask:
        """Update task fields without changing state (e.g. step progress).

        Raises:
            TaskNotFoundError: If the task doesn't exist.
            VersionConflictError: If a concurrent update occurred.
        """
        task = await self.get(task_id)
        fields.update(
            updated_at=datetime.now(timezone.utc),
            version=task.version + 1,
        )
        updated = task.model_copy(update=fields)
        if not await self.repository.update_with_version(updated):
            raise VersionConflictError(task_id, task.version)
        return updated
