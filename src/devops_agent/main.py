"""FastAPI application entry point for the DevOps agent.

This module wires the collaborators (Kubernetes, GitHub, LLM, notifier,
health checker) into the agent task pipeline and exposes the HTTP surface.
It also runs a background sweep that expires overdue confirmations.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from src.devops_agent.api.errors import (
    REQUEST_ID_HEADER,
    error_response,
    register_error_handlers,
)
from src.devops_agent.api.routes import AgentRuntime, create_agent_router
from src.devops_agent.config import AgentSettings, get_settings
from src.devops_agent.events.emitter import EventSinkType, create_event_emitter
from src.devops_agent.events.metrics import generate_metrics_output, get_metrics
from src.devops_agent.github.client import GitHubClient
from src.devops_agent.health import HttpHealthChecker
from src.devops_agent.intelligence.client import LLMClient
from src.devops_agent.notifications import LoggingNotifier, WebhookNotifier
from src.devops_agent.orchestration.client import KubernetesOrchestrationClient
from src.devops_agent.orchestration.controller import DeploymentController
from src.devops_agent.orchestration.retry import RetryPolicy
from src.devops_agent.router.agent import IntentRouter
from src.devops_agent.tasks.pipeline import AgentTaskPipeline
from src.devops_agent.tasks.workflows import WorkflowServices

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Routes reachable without a bearer token
PUBLIC_PATHS = {"/health", "/ready", "/metrics"}

# Upper bound between confirmation expiry sweeps
MAX_SWEEP_INTERVAL_SECONDS = 30.0


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: AgentSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Agent configuration:")
    logger.info(f"  Environment: {settings.environment}")
    logger.info(f"  API Token: {_redact_secret(settings.api_token)}")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(settings.github_token)}")
    logger.info(f"  LLM URL: {settings.llm_url}")
    logger.info(f"  LLM Model: {settings.llm_model}")
    logger.info(f"  LLM API Key: {_redact_secret(settings.llm_api_key)}")
    logger.info(f"  Kubeconfig Path: {settings.kubeconfig_path or '<default>'}")
    logger.info(f"  In Cluster: {settings.in_cluster}")
    logger.info(
        f"  Orchestration Timeout Seconds: {settings.orchestration_timeout_seconds}"
    )
    logger.info(f"  Orchestration Max Retries: {settings.orchestration_max_retries}")
    logger.info(f"  Confirmation TTL Seconds: {settings.confirmation_ttl_seconds}")
    logger.info(f"  Fetch Concurrency: {settings.fetch_concurrency}")
    logger.info(f"  Max Finished Tasks: {settings.max_finished_tasks}")
    logger.info(
        f"  Notification Webhook URL: {_redact_secret(settings.notification_webhook_url)}"
    )
    logger.info(f"  Health URL Template: {settings.health_url_template}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def build_runtime(settings: AgentSettings) -> AgentRuntime:
    """Wire all collaborators into an AgentRuntime.

    Args:
        settings: Validated agent settings.

    Returns:
        Fully wired AgentRuntime.
    """
    metrics = get_metrics()

    retry_policy = RetryPolicy(
        max_retries=settings.orchestration_max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    controller = DeploymentController(
        client=KubernetesOrchestrationClient.from_config(
            kubeconfig_path=settings.kubeconfig_path,
            in_cluster=settings.in_cluster,
            request_timeout=settings.orchestration_timeout_seconds,
        ),
        retry_policy=retry_policy,
        timeout_seconds=settings.orchestration_timeout_seconds,
        metrics=metrics,
    )

    github_client = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
        retry_policy=retry_policy,
    )
    llm = LLMClient(
        llm_url=settings.llm_url,
        model_name=settings.llm_model,
        api_key=settings.llm_api_key,
        timeout=settings.llm_timeout_seconds,
    )
    if settings.notification_webhook_url:
        notifier = WebhookNotifier(settings.notification_webhook_url)
    else:
        notifier = LoggingNotifier()
    health_checker = HttpHealthChecker(settings.health_url_template)

    services = WorkflowServices(
        controller=controller,
        code_hosting=github_client,
        llm=llm,
        notifier=notifier,
        health_checker=health_checker,
        default_channel=settings.default_notification_channel,
        paging_channel=settings.paging_channel,
        fetch_concurrency=settings.fetch_concurrency,
        llm_model=settings.llm_model,
    )
    emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])
    pipeline = AgentTaskPipeline(
        services=services,
        emitter=emitter,
        confirmation_ttl_seconds=settings.confirmation_ttl_seconds,
        max_finished_tasks=settings.max_finished_tasks,
    )

    return AgentRuntime(
        settings=settings,
        pipeline=pipeline,
        controller=controller,
        router=IntentRouter(llm),
        closers=[github_client.close, notifier.close, health_checker.close, emitter.close],
    )


async def _sweep_expired_confirmations(pipeline: AgentTaskPipeline, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await pipeline.expire_overdue()
        except Exception:
            logger.exception("Confirmation expiry sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Dependency wiring, unless a runtime was injected
    - The confirmation expiry sweep
    - Graceful shutdown and cleanup
    """
    logger.info("DevOps agent starting up...")

    if app.state.runtime is None:
        settings = app.state.settings or get_settings()
        _log_configuration(settings)
        app.state.settings = settings
        app.state.runtime = build_runtime(settings)

    runtime: AgentRuntime = app.state.runtime
    interval = min(
        float(runtime.settings.confirmation_ttl_seconds), MAX_SWEEP_INTERVAL_SECONDS
    )
    sweeper = asyncio.create_task(
        _sweep_expired_confirmations(runtime.pipeline, interval)
    )

    logger.info("DevOps agent started successfully")

    yield

    logger.info("DevOps agent shutting down...")

    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await runtime.aclose()

    logger.info("DevOps agent shutdown complete")


def create_app(
    runtime: Optional[AgentRuntime] = None,
    settings: Optional[AgentSettings] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        runtime: Pre-wired collaborators; built from settings on startup
                 when omitted.
        settings: Settings to use instead of reading the environment.
    """
    app = FastAPI(
        title="DevOps Agent",
        description="Code review, test writing, deployment and incident automation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.settings = runtime.settings if runtime is not None else settings

    register_error_handlers(app)

    @app.middleware("http")
    async def authenticate(request: Request, call_next):
        request.state.request_id = (
            request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        )
        cfg: Optional[AgentSettings] = request.app.state.settings
        if (
            cfg is not None
            and cfg.api_token
            and request.url.path not in PUBLIC_PATHS
            and request.headers.get("Authorization") != f"Bearer {cfg.api_token}"
        ):
            logger.warning(
                "Unauthorized request",
                extra={"path": request.url.path, "request_id": request.state.request_id},
            )
            return error_response(request, 401, "Unauthorized")

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response

    @app.get("/health")
    async def health():
        """Liveness endpoint."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request):
        """Readiness endpoint.

        Ready once the collaborators are wired; returns 503 before that.
        """
        if request.app.state.runtime is None:
            return error_response(request, 503, "Agent runtime is not initialized")
        return {"status": "ready"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics():
        """Prometheus metrics endpoint."""
        return PlainTextResponse(
            generate_metrics_output(), media_type=CONTENT_TYPE_LATEST
        )

    app.include_router(create_agent_router())
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.devops_agent.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
