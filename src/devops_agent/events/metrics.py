"""Prometheus metrics for the DevOps agent.

Metrics Defined:
- devops_agent_tasks_processed_total: Tasks that reached a terminal state
- devops_agent_tasks_failed_total: Failed tasks by failure reason
- devops_agent_task_duration_seconds: Time from submission to completion
- devops_agent_tasks_by_state: Current number of tasks per state
- devops_agent_deployment_operations_total: Controller operations by outcome

Metrics are exposed in Prometheus text format at ``/metrics``.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.devops_agent.events.emitter import EventEmitter
from src.devops_agent.events.models import EventType, TaskEvent


logger = logging.getLogger(__name__)


# 100ms to 10 minutes; monitor cycles are short, deploy waits are not
DEFAULT_DURATION_BUCKETS = (
    0.1,
    0.5,
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
)

TASK_STATES = ("queued", "running", "suspended", "succeeded", "failed")


class AgentMetrics:
    """Container for all agent Prometheus metrics.

    Pass a custom ``registry`` in tests so metric names do not collide
    with the process-wide default registry.

    Example:
        >>> metrics = AgentMetrics(registry=CollectorRegistry())
        >>> metrics.record_task_processed("deploy", success=True)
        >>> metrics.record_deployment_operation("rollback", success=False)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.tasks_processed_total = Counter(
            "devops_agent_tasks_processed_total",
            "Total number of tasks that reached a terminal state",
            labelnames=["kind", "result"],
            registry=self.registry,
        )

        self.tasks_failed_total = Counter(
            "devops_agent_tasks_failed_total",
            "Total number of failed tasks",
            labelnames=["kind", "reason"],
            registry=self.registry,
        )

        self.task_duration_seconds = Histogram(
            "devops_agent_task_duration_seconds",
            "Time from task submission to completion in seconds",
            labelnames=["kind"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.tasks_by_state = Gauge(
            "devops_agent_tasks_by_state",
            "Current number of tasks in each state",
            labelnames=["state"],
            registry=self.registry,
        )

        self.task_timeouts_total = Counter(
            "devops_agent_task_timeouts_total",
            "Total number of confirmations that expired before use",
            labelnames=["kind"],
            registry=self.registry,
        )

        self.deployment_operations_total = Counter(
            "devops_agent_deployment_operations_total",
            "Deployment controller operations by outcome",
            labelnames=["operation", "result"],
            registry=self.registry,
        )

        for state in TASK_STATES:
            self.tasks_by_state.labels(state=state).set(0)

    def record_task_processed(self, kind: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.tasks_processed_total.labels(kind=kind, result=result).inc()

    def record_task_failed(self, kind: str, reason: str) -> None:
        self.tasks_failed_total.labels(kind=kind, reason=reason).inc()

    def record_task_duration(self, kind: str, duration_seconds: float) -> None:
        self.task_duration_seconds.labels(kind=kind).observe(duration_seconds)

    def record_task_timeout(self, kind: str) -> None:
        self.task_timeouts_total.labels(kind=kind).inc()

    def record_deployment_operation(self, operation: str, success: bool) -> None:
        result = "success" if success else "failure"
        self.deployment_operations_total.labels(
            operation=operation, result=result
        ).inc()

    def move_task(self, from_state: Optional[str], to_state: Optional[str]) -> None:
        """Shift one task between state gauges."""
        if from_state in TASK_STATES:
            self.tasks_by_state.labels(state=from_state).dec()
        if to_state in TASK_STATES:
            self.tasks_by_state.labels(state=to_state).inc()


_default_metrics: Optional[AgentMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> AgentMetrics:
    """Get the process-wide metrics, or a fresh instance for a custom registry."""
    global _default_metrics

    if registry is not None:
        return AgentMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = AgentMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render metrics in Prometheus text format for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: moves the task between state gauges
    - ERROR: counts nothing on its own; failures are counted on completion
    - COMPLETION: processed counter, failure counter and duration
    - TIMEOUT: timeout counter; the failure itself is counted on completion
    """

    def __init__(
        self,
        metrics: Optional[AgentMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> AgentMetrics:
        return self._metrics

    async def emit(self, event: TaskEvent) -> None:
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._metrics.move_task(
                    event.details.get("from_state"),
                    event.details.get("to_state"),
                )
            elif event.event_type == EventType.COMPLETION:
                self._handle_completion(event)
            elif event.event_type == EventType.TIMEOUT:
                self._metrics.record_task_timeout(event.kind)
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "task_id": event.task_id,
                    "error": str(e),
                },
            )

    def _handle_completion(self, event: TaskEvent) -> None:
        success = event.details.get("state") == "succeeded"
        self._metrics.record_task_processed(event.kind, success=success)
        if not success:
            self._metrics.record_task_failed(
                event.kind, event.details.get("failure_reason") or "error"
            )

        duration = event.details.get("duration_seconds")
        if duration is not None:
            self._metrics.record_task_duration(event.kind, float(duration))
