"""Unit tests for task events, emitters and Prometheus metrics."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from src.devops_agent.events.emitter import (
    CompositeEventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.devops_agent.events.metrics import (
    AgentMetrics,
    MetricsEventEmitter,
    generate_metrics_output,
)
from src.devops_agent.events.models import EventType, TaskEvent


def run_async(coro):
    return asyncio.run(coro)


def _event(event_type, kind="rollback", **details):
    return TaskEvent(event_type=event_type, task_id="t-1", kind=kind, details=details)


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics_emitter(registry):
    return MetricsEventEmitter(metrics=AgentMetrics(registry=registry))


class TestTaskEvent:
    def test_log_dict_flattens_details(self):
        flat = _event(EventType.ERROR, error_message="cluster down", step="apply").to_log_dict()

        assert flat["event_type"] == "error"
        assert flat["task_id"] == "t-1"
        assert flat["kind"] == "rollback"
        assert flat["error_message"] == "cluster down"
        assert flat["step"] == "apply"

    def test_timestamp_is_utc(self):
        assert _event(EventType.COMPLETION).timestamp.utcoffset().total_seconds() == 0


class TestLoggingEventEmitter:
    @pytest.mark.parametrize(
        "event_type,level",
        [
            (EventType.STATE_TRANSITION, logging.INFO),
            (EventType.CONFIRMATION_REQUESTED, logging.INFO),
            (EventType.ERROR, logging.ERROR),
            (EventType.TIMEOUT, logging.WARNING),
        ],
    )
    def test_levels(self, caplog, event_type, level):
        caplog.set_level(logging.DEBUG, logger="devops_agent.audit")
        emitter = LoggingEventEmitter(logger_name="devops_agent.audit")

        run_async(emitter.emit(_event(event_type)))

        record = caplog.records[-1]
        assert record.levelno == level
        assert record.task_id == "t-1"
        assert record.getMessage() == f"Task event: {event_type.value} for rollback t-1"


class TestCompositeEventEmitter:
    def test_one_failing_sink_does_not_block_others(self):
        broken = AsyncMock()
        broken.emit.side_effect = RuntimeError("sink down")
        healthy = AsyncMock()
        composite = CompositeEventEmitter([broken, healthy])
        event = _event(EventType.COMPLETION, state="succeeded")

        run_async(composite.emit(event))

        healthy.emit.assert_awaited_once_with(event)

    def test_close_reaches_every_sink(self):
        first = AsyncMock()
        first.close.side_effect = RuntimeError("already closed")
        second = AsyncMock()
        composite = CompositeEventEmitter([first, second])

        run_async(composite.close())

        second.close.assert_awaited_once()

    def test_emitters_is_a_copy(self):
        composite = CompositeEventEmitter()
        composite.add_emitter(NullEventEmitter())

        composite.emitters.clear()

        assert len(composite.emitters) == 1


class TestCreateEventEmitter:
    def test_default_is_logging(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)

    def test_multiple_sinks_are_composed(self):
        emitter = create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS])

        assert isinstance(emitter, CompositeEventEmitter)
        assert [type(e) for e in emitter.emitters] == [LoggingEventEmitter, MetricsEventEmitter]


class TestMetricsEventEmitter:
    def test_state_transitions_move_gauges(self, registry, metrics_emitter):
        run_async(metrics_emitter.emit(_event(EventType.STATE_TRANSITION, from_state=None, to_state="queued")))
        run_async(metrics_emitter.emit(_event(EventType.STATE_TRANSITION, from_state="queued", to_state="running")))

        assert registry.get_sample_value("devops_agent_tasks_by_state", {"state": "queued"}) == 0.0
        assert registry.get_sample_value("devops_agent_tasks_by_state", {"state": "running"}) == 1.0

    def test_failed_completion(self, registry, metrics_emitter):
        run_async(
            metrics_emitter.emit(
                _event(
                    EventType.COMPLETION,
                    state="failed",
                    failure_reason="confirmation_expired",
                    duration_seconds=2.5,
                )
            )
        )

        assert registry.get_sample_value(
            "devops_agent_tasks_processed_total", {"kind": "rollback", "result": "failure"}
        ) == 1.0
        assert registry.get_sample_value(
            "devops_agent_tasks_failed_total", {"kind": "rollback", "reason": "confirmation_expired"}
        ) == 1.0
        assert registry.get_sample_value(
            "devops_agent_task_duration_seconds_sum", {"kind": "rollback"}
        ) == 2.5

    def test_timeout_counted_without_failure(self, registry, metrics_emitter):
        run_async(metrics_emitter.emit(_event(EventType.TIMEOUT)))

        assert registry.get_sample_value("devops_agent_task_timeouts_total", {"kind": "rollback"}) == 1.0
        assert registry.get_sample_value(
            "devops_agent_tasks_failed_total", {"kind": "rollback", "reason": "error"}
        ) is None

    def test_errors_are_not_counted(self, registry, metrics_emitter):
        run_async(metrics_emitter.emit(_event(EventType.ERROR, error_message="x")))

        assert registry.get_sample_value(
            "devops_agent_tasks_processed_total", {"kind": "rollback", "result": "failure"}
        ) is None

    def test_exposition_format(self, registry):
        AgentMetrics(registry=registry).record_deployment_operation("rollback", success=False)

        output = generate_metrics_output(registry).decode()

        assert 'devops_agent_deployment_operations_total{operation="rollback",result="failure"} 1.0' in output
