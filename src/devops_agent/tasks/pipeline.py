"""Agent task pipeline.

Runs workflows as AgentTasks through the state machine:

    queued → running → succeeded | failed | suspended
    suspended → running (confirm) | failed (expiry, cancel)

Each task runs as its own asyncio task. A suspended task holds no running
coroutine; it is resumed by ``confirm`` from the step after the gate, with
the outputs of earlier steps restored from ``AgentTask.context``.
Confirmation expiry is applied lazily when a task is read and by the
``expire_overdue`` sweep.
"""

import asyncio
import logging
import secrets
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Dict, Optional, Set

from src.devops_agent.errors import (
    ConfirmationExpiredError,
    ConfirmationMismatchError,
    DevOpsAgentError,
    TaskCancelledError,
    ValidationError,
)
from src.devops_agent.events.emitter import EventEmitter, NullEventEmitter
from src.devops_agent.events.models import EventType, TaskEvent
from src.devops_agent.tasks.machine import (
    InMemoryTaskRepository,
    InvalidTransitionError,
    TaskStateMachine,
    VersionConflictError,
)
from src.devops_agent.tasks.models import (
    AgentTask,
    ConfirmationToken,
    FailureReason,
    TaskFailure,
    TaskKind,
    TaskState,
)
from src.devops_agent.tasks.steps import StepContext, StepStatus
from src.devops_agent.tasks.workflows import Workflow, WorkflowServices, build_workflows


logger = logging.getLogger(__name__)


DEFAULT_CONFIRMATION_TTL_SECONDS = 300
DEFAULT_MAX_FINISHED_TASKS = 1000


class AgentTaskPipeline:
    """Submits, runs, suspends and resumes agent tasks.

    Attributes:
        services: Collaborators handed to every step.
        workflows: Workflow registry keyed by task kind.
        machine: Task state machine and its repository.
        emitter: Sink for task events. Emitter failures never affect a task.
        confirmation_ttl_seconds: Lifetime of issued confirmation tokens.
        token_grace_seconds: How long the token of a finished task stays
            indexed, so a late confirmation is reported as expired or
            cancelled rather than unknown. Defaults to the token TTL.
        max_finished_tasks: Finished tasks kept for lookup; the oldest are
            evicted with their token and failure record.

    Example:
        >>> pipeline = AgentTaskPipeline(services)
        >>> task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
        >>> task.state
        <TaskState.SUSPENDED: 'suspended'>
        >>> await pipeline.confirm(task.id, task.confirmation_token)
    """

    def __init__(
        self,
        services: WorkflowServices,
        workflows: Optional[Dict[TaskKind, Workflow]] = None,
        machine: Optional[TaskStateMachine] = None,
        emitter: Optional[EventEmitter] = None,
        confirmation_ttl_seconds: int = DEFAULT_CONFIRMATION_TTL_SECONDS,
        token_grace_seconds: Optional[int] = None,
        max_finished_tasks: int = DEFAULT_MAX_FINISHED_TASKS,
    ):
        if max_finished_tasks < 1:
            raise ValueError("max_finished_tasks must be at least 1")
        self.services = services
        self.workflows = workflows if workflows is not None else build_workflows()
        self.machine = machine or TaskStateMachine(InMemoryTaskRepository())
        self.emitter = emitter or NullEventEmitter()
        self.confirmation_ttl_seconds = confirmation_ttl_seconds
        self.token_grace_seconds = (
            confirmation_ttl_seconds if token_grace_seconds is None else token_grace_seconds
        )
        self.max_finished_tasks = max_finished_tasks

        self._background: Set["asyncio.Task[None]"] = set()
        self._tokens: Dict[str, str] = {}
        self._token_release_at: Dict[str, datetime] = {}
        self._failures: Dict[str, TaskFailure] = {}
        self._finished: "OrderedDict[str, None]" = OrderedDict()

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def submit(
        self,
        kind: TaskKind,
        payload: Dict[str, Any],
        wait: bool = True,
    ) -> AgentTask:
        """Validate ``payload``, create a task and start running it.

        Args:
            kind: Workflow to run.
            payload: Raw workflow payload.
            wait: Await the task until it is terminal or suspended.

        Returns:
            The task as of completion or suspension, or the queued task when
            ``wait`` is False.

        Raises:
            ValidationError: If the kind is unknown or the payload is invalid.
        """
        workflow = self.workflows.get(kind)
        if workflow is None:
            raise ValidationError(
                f"No workflow registered for {kind}", details={"kind": str(kind)}
            )

        validated = workflow.validate_payload(payload)
        task = await self.machine.create(kind, validated.model_dump(mode="json"))
        await self._emit_transition(task, None, TaskState.QUEUED)

        runner = self._spawn(self._execute(task.id))
        if not wait:
            return task

        await asyncio.shield(runner)
        return await self.machine.get(task.id)

    async def get(self, task_id: str) -> AgentTask:
        """Return a task, expiring it first if its confirmation is overdue.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """
        task = await self.machine.get(task_id)
        if self._is_overdue(task):
            task = await self._expire(task)
        return task

    async def confirm(self, task_id: str, token: str, wait: bool = True) -> AgentTask:
        """Resume a suspended task with its confirmation token.

        A mismatched token leaves the task suspended. An overdue token fails
        the task with ``confirmation_expired``. Neither resumes any step.

        Raises:
            TaskNotFoundError: If the task does not exist.
            ConfirmationMismatchError: If ``token`` does not match.
            ConfirmationExpiredError: If the token has expired.
            TaskCancelledError: If the task was cancelled.
            InvalidTransitionError: If the task is not awaiting confirmation.
        """
        task = await self.get(task_id)
        self._raise_if_closed(task)

        if task.state != TaskState.SUSPENDED or task.confirmation is None:
            raise InvalidTransitionError(
                task.state,
                TaskState.RUNNING,
                f"Task {task_id} is {task.state.value}, not awaiting confirmation",
            )

        if not secrets.compare_digest(
            task.confirmation.value.encode("utf-8"), token.encode("utf-8")
        ):
            logger.warning(
                "Confirmation token mismatch",
                extra={"task_id": task_id, "kind": task.kind.value},
            )
            raise ConfirmationMismatchError(
                f"Confirmation token does not match task {task_id}",
                details={"task_id": task_id},
            )

        task = await self._transition(task, TaskState.RUNNING, {"confirmed": True})
        self._tokens.pop(token, None)
        self._token_release_at.pop(token, None)

        logger.info(
            "Task confirmed",
            extra={"task_id": task_id, "kind": task.kind.value},
        )

        runner = self._spawn(self._execute(task_id))
        if not wait:
            return task
        await asyncio.shield(runner)
        return await self.machine.get(task_id)

    async def find_by_token(
        self, token: str, deployment_id: Optional[str] = None
    ) -> AgentTask:
        """Return the task that was issued ``token`` without resuming it.

        Args:
            token: A confirmation token returned on suspension.
            deployment_id: When given, the task's payload must target it.

        Raises:
            ConfirmationMismatchError: If the token is unknown, already used,
                or was issued for another deployment.
            ConfirmationExpiredError: If the token has expired.
            TaskCancelledError: If the task was cancelled.
        """
        task_id = self._tokens.get(token)
        if task_id is None:
            raise ConfirmationMismatchError("Unknown confirmation token")

        task = await self.get(task_id)
        if deployment_id is not None and task.payload.get("deployment_id") != deployment_id:
            raise ConfirmationMismatchError(
                "Confirmation token was issued for another deployment",
                details={"deployment_id": deployment_id},
            )
        self._raise_if_closed(task)
        return task

    async def confirm_by_token(
        self,
        token: str,
        deployment_id: Optional[str] = None,
        wait: bool = True,
    ) -> AgentTask:
        """Confirm whichever task was issued ``token``.

        Raises:
            ConfirmationMismatchError: If the token is unknown, already used,
                or was issued for another deployment.
        """
        task = await self.find_by_token(token, deployment_id)
        return await self.confirm(task.id, token, wait=wait)

    async def cancel(self, task_id: str) -> AgentTask:
        """Abort a suspended task.

        Raises:
            TaskNotFoundError: If the task does not exist.
            InvalidTransitionError: If the task is not suspended.
        """
        task = await self.get(task_id)
        if task.state != TaskState.SUSPENDED:
            raise InvalidTransitionError(
                task.state,
                TaskState.FAILED,
                f"Only suspended tasks can be cancelled; task {task_id} is "
                f"{task.state.value}",
            )

        task = await self._transition(
            task,
            TaskState.FAILED,
            {
                "failure_reason": FailureReason.CANCELLED.value,
                "error": "Cancelled while awaiting confirmation",
            },
        )
        await self._emit_completion(task)
        return task

    async def expire_overdue(self) -> int:
        """Fail every suspended task whose confirmation has expired.

        Returns:
            The number of tasks expired by this sweep.
        """
        self._release_tokens(datetime.now(timezone.utc))
        expired = 0
        for task in await self.machine.repository.list_by_state(TaskState.SUSPENDED):
            if not self._is_overdue(task):
                continue
            updated = await self._expire(task)
            if updated.failure_reason == FailureReason.CONFIRMATION_EXPIRED:
                expired += 1

        if expired:
            logger.info("Expired overdue confirmations", extra={"count": expired})
        return expired

    def error_for(self, task_id: str) -> Optional[TaskFailure]:
        """Return the recorded failure of a task, if an error failed it."""
        return self._failures.get(task_id)

    async def aclose(self) -> None:
        """Wait for every running task, including dependent tasks they spawn."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> "asyncio.Task[None]":
        runner = asyncio.ensure_future(coro)
        self._background.add(runner)
        runner.add_done_callback(self._background.discard)
        return runner

    async def _submit_dependent(
        self, kind: TaskKind, payload: Dict[str, Any]
    ) -> AgentTask:
        return await self.submit(kind, payload, wait=False)

    async def _execute(self, task_id: str) -> None:
        task = await self.machine.get(task_id)
        workflow = self.workflows[task.kind]

        try:
            if task.state == TaskState.QUEUED:
                task = await self._transition(task, TaskState.RUNNING)

            ctx = StepContext(
                task_id=task_id,
                kind=task.kind,
                payload=workflow.payload_model.model_validate(task.payload),
                services=self.services,
                data=dict(task.context),
                submit=self._submit_dependent,
            )

            for index in range(task.next_step, len(workflow.steps)):
                step = workflow.steps[index]
                result = await step.run(ctx)

                if result.status == StepStatus.SUSPENDED:
                    await self._suspend(task, ctx, step.name, index + 1)
                    return

                if result.status == StepStatus.FAILED:
                    error = result.error or DevOpsAgentError(f"Step {step.name} failed")
                    if step.critical:
                        await self._fail(
                            task_id,
                            error,
                            result.failure_reason or FailureReason.ERROR,
                            step.name,
                        )
                        return

                    ctx.data.update(step.failure_annotations(error))
                    await self._emit(
                        EventType.ERROR,
                        task,
                        {
                            "error_message": str(error),
                            "error_type": type(error).__name__,
                            "step": step.name,
                            "critical": False,
                        },
                    )
                else:
                    ctx.data.update(result.outputs)

                await self.machine.update(
                    task_id, next_step=index + 1, context=dict(ctx.data)
                )

            outcome = workflow.build_result(ctx)
            task = await self._transition(
                await self.machine.get(task_id),
                TaskState.SUCCEEDED,
                updates={
                    "result": outcome,
                    "context": ctx.data,
                    "next_step": len(workflow.steps),
                },
            )
            await self._emit_completion(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(
                "Task execution failed",
                extra={"task_id": task_id, "kind": task.kind.value, "error": str(e)},
            )
            try:
                await self._fail(task_id, e, FailureReason.ERROR, None)
            except DevOpsAgentError as fail_error:
                logger.error(
                    "Could not record task failure",
                    extra={"task_id": task_id, "error": str(fail_error)},
                )

    async def _suspend(
        self,
        task: AgentTask,
        ctx: StepContext,
        step_name: str,
        next_step: int,
    ) -> None:
        token = ConfirmationToken(
            value=secrets.token_urlsafe(24),
            ttl_seconds=self.confirmation_ttl_seconds,
        )
        expires_at = token.expires_at.isoformat()

        task = await self._transition(
            await self.machine.get(task.id),
            TaskState.SUSPENDED,
            {"step": step_name, "expires_at": expires_at},
            updates={"confirmation": token, "context": ctx.data, "next_step": next_step},
        )
        self._tokens[token.value] = task.id

        logger.info(
            "Task awaiting confirmation",
            extra={"task_id": task.id, "kind": task.kind.value, "expires_at": expires_at},
        )
        await self._emit(
            EventType.CONFIRMATION_REQUESTED,
            task,
            {"step": step_name, "expires_at": expires_at},
        )

    async def _fail(
        self,
        task_id: str,
        error: Exception,
        reason: FailureReason,
        step_name: Optional[str],
    ) -> None:
        task = await self.machine.get(task_id)

        details: Dict[str, Any] = {
            "error_message": str(error),
            "error_type": type(error).__name__,
        }
        if step_name is not None:
            details["step"] = step_name
        await self._emit(EventType.ERROR, task, details)

        transition: Dict[str, Any] = {
            "failure_reason": reason.value,
            "error": str(error),
        }
        if step_name is not None:
            transition["step"] = step_name
        # Recorded first so retention can evict it with the task
        self._failures[task_id] = TaskFailure.from_exception(error)
        try:
            task = await self._transition(task, TaskState.FAILED, transition)
        except DevOpsAgentError:
            self._failures.pop(task_id, None)
            raise
        await self._emit_completion(task)

    def _is_overdue(self, task: AgentTask) -> bool:
        return (
            task.state == TaskState.SUSPENDED
            and task.confirmation is not None
            and task.confirmation.is_expired()
        )

    async def _expire(self, task: AgentTask) -> AgentTask:
        expires_at = task.confirmation.expires_at.isoformat()
        try:
            updated = await self._transition(
                task,
                TaskState.FAILED,
                {
                    "failure_reason": FailureReason.CONFIRMATION_EXPIRED.value,
                    "error": "Confirmation token expired",
                    "expires_at": expires_at,
                },
            )
        except (InvalidTransitionError, VersionConflictError):
            # Confirmed, cancelled or expired concurrently
            return await self.machine.get(task.id)

        logger.warning(
            "Confirmation expired",
            extra={"task_id": task.id, "kind": task.kind.value, "expires_at": expires_at},
        )
        await self._emit(EventType.TIMEOUT, updated, {"expires_at": expires_at})
        await self._emit_completion(updated)
        return updated

    def _raise_if_closed(self, task: AgentTask) -> None:
        if task.state != TaskState.FAILED:
            return
        if task.failure_reason == FailureReason.CANCELLED:
            raise TaskCancelledError(
                f"Task {task.id} was cancelled", details={"task_id": task.id}
            )
        if task.failure_reason == FailureReason.CONFIRMATION_EXPIRED:
            raise ConfirmationExpiredError(
                f"Confirmation for task {task.id} expired",
                details={"task_id": task.id},
            )

    # -------------------------------------------------------------------------
    # State and events
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        task: AgentTask,
        to_state: TaskState,
        details: Optional[Dict[str, Any]] = None,
        updates: Optional[Dict[str, Any]] = None,
    ) -> AgentTask:
        updated = await self.machine.transition(task.id, to_state, details, updates)
        if updated.is_terminal:
            await self._retire(updated.id)
        await self._emit_transition(updated, task.state, to_state)
        return updated

    async def _retire(self, task_id: str) -> None:
        """Start the token grace window of a finished task and apply retention."""
        now = datetime.now(timezone.utc)
        release_at = now + timedelta(seconds=self.token_grace_seconds)
        for token, owner in self._tokens.items():
            if owner == task_id:
                self._token_release_at[token] = release_at

        self._finished[task_id] = None
        while len(self._finished) > self.max_finished_tasks:
            evicted, _ = self._finished.popitem(last=False)
            await self.machine.repository.delete(evicted)
            self._failures.pop(evicted, None)
            for token in [t for t, owner in self._tokens.items() if owner == evicted]:
                self._tokens.pop(token)
                self._token_release_at.pop(token, None)
            logger.debug("Evicted finished task", extra={"task_id": evicted})

        self._release_tokens(now)

    def _release_tokens(self, now: datetime) -> None:
        for token in [t for t, at in self._token_release_at.items() if at <= now]:
            self._token_release_at.pop(token)
            self._tokens.pop(token, None)

    async def _emit_transition(
        self,
        task: AgentTask,
        from_state: Optional[TaskState],
        to_state: TaskState,
    ) -> None:
        details: Dict[str, Any] = {
            "from_state": from_state.value if from_state else None,
            "to_state": to_state.value,
        }
        if to_state == TaskState.FAILED and task.failure_reason is not None:
            details["failure_reason"] = task.failure_reason.value
        await self._emit(EventType.STATE_TRANSITION, task, details)

    async def _emit_completion(self, task: AgentTask) -> None:
        duration = (datetime.now(timezone.utc) - task.created_at).total_seconds()
        await self._emit(
            EventType.COMPLETION,
            task,
            {
                "state": task.state.value,
                "failure_reason": (
                    task.failure_reason.value if task.failure_reason else None
                ),
                "duration_seconds": duration,
            },
        )

    async def _emit(
        self,
        event_type: EventType,
        task: AgentTask,
        details: Dict[str, Any],
    ) -> None:
        event = TaskEvent(
            event_type=event_type,
            task_id=task.id,
            kind=task.kind.value,
            details=details,
        )
        try:
            await self.emitter.emit(event)
        except Exception:
            logger.exception(
                "Event emitter failed",
                extra={"task_id": task.id, "event_type": event_type.value},
            )
