"""Typed workflow steps.

A workflow is an ordered list of Steps. Each step declares one capability
(fetch context, analyze, act, notify) and whether it is critical. A step
function returns a dict of outputs that later steps read from the shared
StepContext, or a StepResult to suspend or fail with a specific reason.
Exceptions raised by a step function become a failed StepResult.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from src.devops_agent.tasks.models import AgentTask, FailureReason, TaskKind


logger = logging.getLogger(__name__)


class StepCapability(str, Enum):
    FETCH_CONTEXT = "fetch_context"
    ANALYZE = "analyze"
    ACT = "act"
    NOTIFY = "notify"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUSPENDED = "suspended"


@dataclass
class StepResult:
    """Outcome of running a single step."""

    status: StepStatus
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Exception] = None
    failure_reason: Optional[FailureReason] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    @classmethod
    def suspend(cls) -> "StepResult":
        return cls(status=StepStatus.SUSPENDED)

    @classmethod
    def fail(
        cls,
        error: Exception,
        failure_reason: FailureReason = FailureReason.ERROR,
    ) -> "StepResult":
        return cls(status=StepStatus.FAILED, error=error, failure_reason=failure_reason)


@dataclass
class StepContext:
    """Everything a step needs to execute.

    Attributes:
        task_id: The running task.
        kind: Workflow kind.
        payload: Validated request payload.
        services: Injected collaborators (see workflows.WorkflowServices).
        data: Outputs accumulated from earlier steps.
        submit: Schedules a dependent task without awaiting it.
    """

    task_id: str
    kind: TaskKind
    payload: Any
    services: Any
    data: Dict[str, Any] = field(default_factory=dict)
    submit: Optional[Callable[[TaskKind, Dict[str, Any]], Awaitable[AgentTask]]] = None


StepFunction = Callable[[StepContext], Awaitable[Union[Dict[str, Any], StepResult]]]


def _default_annotations(name: str, error: Exception) -> Dict[str, Any]:
    return {f"{name}_error": str(error)}


class Step:
    """One step of a workflow.

    Attributes:
        name: Step name used in logs, events and annotations.
        capability: What the step does.
        fn: Coroutine function implementing the step.
        critical: Whether a failure aborts the task.
        on_failure: Builds the annotations recorded when a non-critical
                    step fails. Defaults to ``{"<name>_error": message}``.

    Example:
        >>> step = Step("post_comment", StepCapability.ACT, post_comment,
        ...             critical=False,
        ...             on_failure=lambda e: {"comment_posted": False})
    """

    def __init__(
        self,
        name: str,
        capability: StepCapability,
        fn: StepFunction,
        critical: bool = True,
        on_failure: Optional[Callable[[Exception], Dict[str, Any]]] = None,
    ):
        self.name = name
        self.capability = capability
        self.fn = fn
        self.critical = critical
        self._on_failure = on_failure

    def failure_annotations(self, error: Exception) -> Dict[str, Any]:
        if self._on_failure is not None:
            return self._on_failure(error)
        return _default_annotations(self.name, error)

    async def run(self, ctx: StepContext) -> StepResult:
        started = time.monotonic()
        try:
            outcome = await self.fn(ctx)
        except Exception as e:
            logger.warning(
                "Step failed",
                extra={
                    "task_id": ctx.task_id,
                    "step": self.name,
                    "capability": self.capability.value,
                    "critical": self.critical,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            result = StepResult.fail(e)
        else:
            if isinstance(outcome, StepResult):
                result = outcome
            else:
                result = StepResult(status=StepStatus.SUCCEEDED, outputs=outcome or {})

        result.duration_seconds = time.monotonic() - started
        return result

    def __repr__(self) -> str:
        return f"Step({self.name!r}, {self.capability.value}, critical={self.critical})"
