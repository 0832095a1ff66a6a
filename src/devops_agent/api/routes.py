"""HTTP routes for agent workflows, deployments, intent routing and tasks.

Handlers resolve their collaborators from the AgentRuntime stored on
``app.state.runtime``. Workflow routes submit a task and wait for it; a
failed task re-raises the error that failed it so the client sees the
mapped status code.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request

from src.devops_agent.api.models import (
    ChatRequest,
    ConfirmRequest,
    IntentAnalysisRequest,
    RollbackRequest,
    ScaleRequest,
)
from src.devops_agent.config import AgentSettings
from src.devops_agent.errors import DevOpsAgentError, TaskFailedError, ValidationError
from src.devops_agent.orchestration.controller import DeploymentController
from src.devops_agent.orchestration.models import parse_deployment_id
from src.devops_agent.router.agent import IntentRouter
from src.devops_agent.tasks.models import (
    AgentTask,
    CodeReviewPayload,
    CostPayload,
    DeployPayload,
    FailureReason,
    IncidentPayload,
    MonitorPayload,
    SecurityPayload,
    TaskKind,
    TaskState,
    WriteTestsPayload,
)
from src.devops_agent.tasks.pipeline import AgentTaskPipeline


logger = logging.getLogger(__name__)


@dataclass
class AgentRuntime:
    """Wired collaborators shared by all requests.

    Attributes:
        settings: Agent configuration.
        pipeline: The agent task pipeline.
        controller: The deployment lifecycle controller.
        router: Intent router for free-text requests.
        closers: Coroutine functions awaited on shutdown.
    """

    settings: AgentSettings
    pipeline: AgentTaskPipeline
    controller: DeploymentController
    router: IntentRouter
    closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.pipeline.aclose()
        for close in self.closers:
            try:
                await close()
            except Exception:
                logger.exception("Failed to close collaborator")


def get_runtime(request: Request) -> AgentRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise DevOpsAgentError("Agent runtime is not initialized")
    return runtime


def _split_deployment_id(deployment_id: str):
    try:
        return parse_deployment_id(deployment_id)
    except ValueError as e:
        raise ValidationError(str(e), details={"deployment_id": deployment_id}) from e


def raise_for_failure(runtime: AgentRuntime, task: AgentTask) -> None:
    """Raise the recorded failure of a failed task."""
    if task.state != TaskState.FAILED:
        return
    if task.failure_reason in (FailureReason.CANCELLED, FailureReason.CONFIRMATION_EXPIRED):
        return

    failure = runtime.pipeline.error_for(task.id)
    if failure is None:
        raise DevOpsAgentError(task.error or "Task failed", details={"task_id": task.id})
    raise TaskFailedError(failure.error_type, failure.message, failure.details)


def confirmation_response(task: AgentTask) -> Dict[str, Any]:
    return {
        "requires_confirmation": True,
        "confirmation_token": task.confirmation_token,
        "task_id": task.id,
        "message": (
            f"{task.kind.value} requires confirmation; resubmit with "
            "confirmation_token and confirmed=true to proceed"
        ),
        "expires_at": task.confirmation.expires_at.isoformat(),
    }


def task_response(runtime: AgentRuntime, task: AgentTask) -> Dict[str, Any]:
    """Render a finished or suspended task as a workflow route response."""
    raise_for_failure(runtime, task)
    if task.state == TaskState.SUSPENDED and task.confirmation is not None:
        return confirmation_response(task)
    if task.state == TaskState.SUCCEEDED:
        return {**(task.result or {}), "task_id": task.id}
    return task.to_summary()


async def _run(runtime: AgentRuntime, kind: TaskKind, payload: Dict[str, Any]) -> Dict[str, Any]:
    task = await runtime.pipeline.submit(kind, payload)
    return task_response(runtime, task)


def create_agent_router() -> APIRouter:
    """Create the router with every agent route."""
    router = APIRouter()

    # -------------------------------------------------------------------------
    # Workflows
    # -------------------------------------------------------------------------

    @router.post("/agent/code-review")
    async def code_review(
        body: CodeReviewPayload, runtime: AgentRuntime = Depends(get_runtime)
    ):
        return await _run(runtime, TaskKind.CODE_REVIEW, body.model_dump())

    @router.post("/agent/test-writer")
    async def test_writer(
        body: WriteTestsPayload, runtime: AgentRuntime = Depends(get_runtime)
    ):
        return await _run(runtime, TaskKind.TEST_WRITER, body.model_dump())

    @router.post("/agent/deploy")
    async def deploy(body: DeployPayload, runtime: AgentRuntime = Depends(get_runtime)):
        return await _run(runtime, TaskKind.DEPLOY, body.model_dump())

    @router.post("/agent/rollback")
    async def rollback(
        body: RollbackRequest, runtime: AgentRuntime = Depends(get_runtime)
    ):
        logger.info(
            "Rollback requested",
            extra={
                "deployment_id": body.deployment_id,
                "confirmed": body.confirmed,
                "has_token": body.confirmation_token is not None,
            },
        )
        if body.confirmation_token:
            if not body.confirmed:
                # Still pending; the same confirmation is returned unchanged
                task = await runtime.pipeline.find_by_token(
                    body.confirmation_token, deployment_id=body.deployment_id
                )
                return task_response(runtime, task)
            task = await runtime.pipeline.confirm_by_token(
                body.confirmation_token, deployment_id=body.deployment_id
            )
            return task_response(runtime, task)
        return await _run(runtime, TaskKind.ROLLBACK, body.to_payload())

    @router.post("/agent/monitor")
    async def monitor(body: MonitorPayload, runtime: AgentRuntime = Depends(get_runtime)):
        return await _run(runtime, TaskKind.MONITOR, body.model_dump())

    @router.post("/agent/security")
    async def security(
        body: SecurityPayload, runtime: AgentRuntime = Depends(get_runtime)
    ):
        return await _run(runtime, TaskKind.SECURITY, body.model_dump())

    @router.post("/agent/cost")
    async def cost(body: CostPayload, runtime: AgentRuntime = Depends(get_runtime)):
        return await _run(runtime, TaskKind.COST, body.model_dump())

    @router.post("/agent/incident-response")
    async def incident_response(
        body: IncidentPayload, runtime: AgentRuntime = Depends(get_runtime)
    ):
        return await _run(runtime, TaskKind.INCIDENT, body.model_dump())

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    @router.get("/deployments")
    async def list_deployments(
        namespace: Optional[str] = None, runtime: AgentRuntime = Depends(get_runtime)
    ):
        deployments = await runtime.controller.list_deployments(namespace)
        return {
            "deployments": [d.model_dump(mode="json") for d in deployments],
            "count": len(deployments),
        }

    @router.get("/deployments/{deployment_id:path}/status")
    async def deployment_status(
        deployment_id: str, runtime: AgentRuntime = Depends(get_runtime)
    ):
        namespace, name = _split_deployment_id(deployment_id)
        status = await runtime.controller.status(name, namespace)
        return status.model_dump(mode="json")

    @router.post("/deployments/{deployment_id:path}/scale")
    async def scale_deployment(
        deployment_id: str,
        body: ScaleRequest,
        runtime: AgentRuntime = Depends(get_runtime),
    ):
        namespace, name = _split_deployment_id(deployment_id)
        result = await runtime.controller.scale(name, namespace, body.replicas)
        return result.model_dump()

    # -------------------------------------------------------------------------
    # Intent routing
    # -------------------------------------------------------------------------

    @router.post("/llm/intent-analysis")
    async def intent_analysis(
        body: IntentAnalysisRequest, runtime: AgentRuntime = Depends(get_runtime)
    ):
        result = await runtime.router.route(body.user_message, body.context)
        return {
            **result.model_dump(),
            "needs_clarification": result.needs_clarification,
            "task_kind": result.task_kind,
        }

    @router.post("/chat")
    async def chat(body: ChatRequest, runtime: AgentRuntime = Depends(get_runtime)):
        intent = await runtime.router.route(body.message, body.context)
        intent_view = intent.model_dump()

        if intent.needs_clarification or intent.task_kind is None:
            return {
                "requires_clarification": True,
                "intent": intent_view,
                "message": "Could you clarify what you would like me to do?",
                "suggested_actions": intent.suggested_actions,
            }

        payload = {**intent.entities, **body.payload}
        task = await runtime.pipeline.submit(TaskKind(intent.task_kind), payload)
        response: Dict[str, Any] = {
            "requires_clarification": False,
            "intent": intent_view,
            "task": task.to_summary(),
        }
        if task.state == TaskState.SUSPENDED and task.confirmation is not None:
            response.update(confirmation_response(task))
        return response

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    @router.get("/tasks/{task_id}")
    async def get_task(task_id: str, runtime: AgentRuntime = Depends(get_runtime)):
        task = await runtime.pipeline.get(task_id)
        return task.to_summary()

    @router.post("/tasks/{task_id}/confirm")
    async def confirm_task(
        task_id: str,
        body: ConfirmRequest,
        runtime: AgentRuntime = Depends(get_runtime),
    ):
        task = await runtime.pipeline.confirm(task_id, body.confirmation_token)
        raise_for_failure(runtime, task)
        return task.to_summary()

    @router.post("/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str, runtime: AgentRuntime = Depends(get_runtime)):
        task = await runtime.pipeline.cancel(task_id)
        return task.to_summary()

    return router
