"""Unit tests for the AgentTaskPipeline and its workflows.

Each test drives one workflow end to end against in-memory collaborators
and asserts on the task state, the result and the collaborator calls.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from src.devops_agent.errors import (
    ConfirmationExpiredError,
    ConfirmationMismatchError,
    NoFilesAvailableError,
    NoPreviousRevisionError,
    TaskCancelledError,
    UpstreamError,
    ValidationError,
)
from src.devops_agent.events.emitter import EventEmitter
from src.devops_agent.events.models import EventType, TaskEvent
from src.devops_agent.orchestration.models import Revision
from src.devops_agent.tasks.machine import InvalidTransitionError, TaskNotFoundError
from src.devops_agent.tasks.models import FailureReason, TaskKind, TaskState
from src.devops_agent.tasks.pipeline import AgentTaskPipeline

from fakes import FakeCodeHosting


def run_async(coro):
    return asyncio.run(coro)


class RecordingEmitter(EventEmitter):
    def __init__(self):
        self.events: List[TaskEvent] = []

    async def emit(self, event: TaskEvent) -> None:
        self.events.append(event)


class BrokenEmitter(EventEmitter):
    async def emit(self, event: TaskEvent) -> None:
        raise RuntimeError("sink offline")


REVIEW = {
    "status": "needs_changes",
    "score": 72,
    "issues": [
        {
            "type": "bug",
            "severity": "high",
            "line": 12,
            "message": "Possible None dereference",
            "suggestion": "Guard the lookup",
        }
    ],
    "summary": "Mostly fine",
    "recommendations": ["Add tests"],
}


def _with_history(client, name="api", namespace="prod"):
    client.add(
        name,
        namespace,
        "registry/api:v3",
        replicas=2,
        revisions=[
            Revision(number=3, image="registry/api:v3"),
            Revision(number=2, image="registry/api:v2"),
        ],
    )


async def _expire_confirmation(pipeline: AgentTaskPipeline, task_id: str) -> None:
    task = await pipeline.machine.get(task_id)
    past = datetime.now(timezone.utc) - timedelta(seconds=task.confirmation.ttl_seconds + 1)
    await pipeline.machine.update(
        task_id, confirmation=task.confirmation.model_copy(update={"issued_at": past})
    )


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


class TestSubmit:
    def test_invalid_payload_creates_no_task(self, pipeline):
        async def scenario():
            with pytest.raises(ValidationError):
                await pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "not-a-repo"})
            return await pipeline.machine.repository.list_by_state(TaskState.QUEUED)

        assert run_async(scenario()) == []

    def test_no_wait_returns_queued_task(self, pipeline, llm):
        llm.default = json.dumps(REVIEW)

        async def scenario():
            task = await pipeline.submit(
                TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7}, wait=False
            )
            await pipeline.aclose()
            return task, await pipeline.get(task.id)

        queued, finished = run_async(scenario())

        assert queued.state == TaskState.QUEUED
        assert finished.state == TaskState.SUCCEEDED

    def test_history_records_every_transition(self, pipeline, llm):
        llm.default = json.dumps(REVIEW)

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert [t.to_state for t in task.history] == [
            TaskState.QUEUED,
            TaskState.RUNNING,
            TaskState.SUCCEEDED,
        ]
        assert all(t.timestamp.tzinfo is not None for t in task.history)


# ---------------------------------------------------------------------------
# code_review
# ---------------------------------------------------------------------------


class TestCodeReview:
    def test_review_posts_comment_and_notifies(self, pipeline, llm, code_hosting, notifier):
        llm.default = json.dumps(REVIEW)

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["status"] == "needs_changes"
        assert task.result["score"] == 72
        assert task.result["issues_found"] == 1
        assert task.result["comment_posted"] is True

        owner, repo, number, body = code_hosting.comments[0]
        assert (owner, repo, number) == ("acme", "api", 7)
        assert "## 🤖 AI Code Review" in body
        assert "**HIGH** (Line 12): Possible None dereference" in body
        assert notifier.messages[0][0] == "#devops"

    def test_comment_failure_is_annotated(self, services, llm):
        llm.default = json.dumps(REVIEW)
        services.code_hosting = FakeCodeHosting(comment_error=UpstreamError("502 from GitHub"))
        pipeline = AgentTaskPipeline(services)

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["comment_posted"] is False
        assert "502 from GitHub" in task.result["comment_error"]

    def test_unstructured_review_is_reported_unparsed(self, pipeline, llm):
        llm.default = "Looks good to me, ship it."

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["status"] == "unparsed"
        assert task.result["score"] == 0
        assert task.result["summary"] == "Looks good to me, ship it."

    def test_llm_failure_fails_task(self, pipeline, llm):
        llm.error = UpstreamError("model unavailable")

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.state == TaskState.FAILED
        assert task.failure_reason == FailureReason.ERROR
        assert "model unavailable" in task.error
        assert pipeline.error_for(task.id).error_type is UpstreamError

    def test_completed_steps_are_persisted_before_a_failure(self, pipeline, llm, code_hosting):
        llm.error = UpstreamError("model unavailable")

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.next_step == 1
        assert task.context["diff"] == code_hosting.diff


# ---------------------------------------------------------------------------
# test_writer
# ---------------------------------------------------------------------------


class TestWriteTests:
    def test_no_fetchable_files_fails_with_reason(self, pipeline):
        task = run_async(
            pipeline.submit(
                TaskKind.TEST_WRITER,
                {"repository": "acme/api", "changed_files": ["missing.py"]},
            )
        )

        assert task.state == TaskState.FAILED
        assert task.failure_reason == FailureReason.NO_FILES_AVAILABLE
        assert pipeline.error_for(task.id).error_type is NoFilesAvailableError

    def test_generates_tests_per_file(self, services, llm):
        services.code_hosting = FakeCodeHosting(files={"a.py": "x = 1", "b.ts": "let y = 2"})
        llm.default = json.dumps(
            {
                "tests_generated": 2,
                "test_files": [{"filename": "test_x", "content": "..."}],
                "test_framework": "pytest",
            }
        )
        pipeline = AgentTaskPipeline(services)

        task = run_async(
            pipeline.submit(
                TaskKind.TEST_WRITER,
                {"repository": "acme/api", "changed_files": ["b.ts", "a.py"]},
            )
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["tests_generated"] == 4
        assert task.result["files_processed"] == 2
        assert task.result["coverage_estimate"] == 60
        assert any("TypeScript" in p for p in llm.prompts)

    def test_pull_request_files_are_listed_when_none_given(self, services, llm):
        services.code_hosting = FakeCodeHosting(
            files={"src/app.py": "x = 1"}, pr_files=["src/app.py"]
        )
        llm.default = json.dumps({"tests_generated": 1, "test_files": [], "test_framework": "pytest"})
        pipeline = AgentTaskPipeline(services)

        task = run_async(
            pipeline.submit(TaskKind.TEST_WRITER, {"repository": "acme/api", "pr_number": 12})
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["files_processed"] == 1
        assert services.code_hosting.fetched == ["src/app.py"]
        assert services.code_hosting.refs == ["refs/pull/12/head"]


# ---------------------------------------------------------------------------
# deploy / monitor
# ---------------------------------------------------------------------------


class TestDeploy:
    def test_deploy_schedules_monitor(self, pipeline, orchestration_client, health_checker):
        async def scenario():
            task = await pipeline.submit(
                TaskKind.DEPLOY,
                {"repository": "acme/checkout", "image_tag": "registry/checkout:9"},
            )
            await pipeline.aclose()
            monitor = await pipeline.get(task.result["monitor_task_id"])
            return task, monitor

        task, monitor = run_async(scenario())

        assert task.state == TaskState.SUCCEEDED
        assert task.result["deployment_id"] == "staging/checkout"
        assert task.result["replicas"] == 1
        assert task.result["environment"] == "staging"
        assert monitor.kind == TaskKind.MONITOR
        assert monitor.state == TaskState.SUCCEEDED
        assert health_checker.sampled == ["staging/checkout"]

    def test_production_uses_prod_namespace(self, pipeline, orchestration_client):
        async def scenario():
            task = await pipeline.submit(
                TaskKind.DEPLOY,
                {
                    "repository": "acme/checkout",
                    "image_tag": "registry/checkout:9",
                    "environment": "production",
                },
            )
            await pipeline.aclose()
            return task

        task = run_async(scenario())

        assert task.result["deployment_id"] == "prod/checkout"
        assert orchestration_client.deployments[("prod", "checkout")].replicas == 3


class TestMonitor:
    def test_healthy_deployment_is_not_notified(self, pipeline, orchestration_client, notifier):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=2)

        task = run_async(pipeline.submit(TaskKind.MONITOR, {"deployment_id": "prod/api"}))

        assert task.result["health_status"] == "healthy"
        assert task.result["response_time_ms"] == 25.0
        assert notifier.messages == []

    def test_unavailable_deployment_is_unhealthy(self, pipeline, orchestration_client, notifier):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=2, available_replicas=0)

        task = run_async(pipeline.submit(TaskKind.MONITOR, {"deployment_id": "prod/api"}))

        assert task.result["health_status"] == "unhealthy"
        assert "unhealthy" in notifier.messages[0][1]

    def test_check_error_yields_unknown(self, pipeline, orchestration_client, health_checker):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=2)
        health_checker.error = "connection refused"

        task = run_async(pipeline.submit(TaskKind.MONITOR, {"deployment_id": "prod/api"}))

        assert task.state == TaskState.SUCCEEDED
        assert task.result["health_status"] == "unknown"
        assert task.result["check_error"] == "connection refused"


# ---------------------------------------------------------------------------
# rollback and confirmation
# ---------------------------------------------------------------------------


class TestRollbackConfirmation:
    def test_rollback_suspends_until_confirmed(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            suspended = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            assert orchestration_client.mutations == []
            confirmed = await pipeline.confirm(suspended.id, suspended.confirmation_token)
            return suspended, confirmed

        suspended, confirmed = run_async(scenario())

        assert suspended.state == TaskState.SUSPENDED
        assert "confirmation_token" not in suspended.to_summary()
        assert "expires_at" in suspended.to_summary()
        assert confirmed.state == TaskState.SUCCEEDED
        assert confirmed.result["previous_version"] == "registry/api:v2"
        assert confirmed.confirmation is None
        assert orchestration_client.mutations == [("patch_image", "prod", "api", "registry/api:v2")]

    def test_confirmation_not_required_runs_immediately(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        task = run_async(
            pipeline.submit(
                TaskKind.ROLLBACK,
                {"deployment_id": "prod/api", "confirmation_required": False},
            )
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["rollback_id"] == f"rollback-{task.id}"

    def test_mismatched_token_keeps_task_suspended(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            with pytest.raises(ConfirmationMismatchError):
                await pipeline.confirm(task.id, "not-the-token")
            return await pipeline.get(task.id)

        task = run_async(scenario())

        assert task.state == TaskState.SUSPENDED
        assert orchestration_client.mutations == []

    def test_expired_token_fails_task(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            await _expire_confirmation(pipeline, task.id)
            with pytest.raises(ConfirmationExpiredError):
                await pipeline.confirm(task.id, task.confirmation_token)
            return await pipeline.get(task.id)

        task = run_async(scenario())

        assert task.state == TaskState.FAILED
        assert task.failure_reason == FailureReason.CONFIRMATION_EXPIRED
        assert orchestration_client.mutations == []

    def test_token_is_single_use(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            await pipeline.confirm(task.id, task.confirmation_token)
            with pytest.raises(ConfirmationMismatchError):
                await pipeline.confirm_by_token(task.confirmation_token)
            with pytest.raises(InvalidTransitionError):
                await pipeline.confirm(task.id, task.confirmation_token)

        run_async(scenario())

        assert len(orchestration_client.mutations) == 1

    def test_confirm_by_token_checks_deployment(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            with pytest.raises(ConfirmationMismatchError):
                await pipeline.confirm_by_token(task.confirmation_token, deployment_id="prod/web")
            return await pipeline.confirm_by_token(
                task.confirmation_token, deployment_id="prod/api"
            )

        task = run_async(scenario())

        assert task.state == TaskState.SUCCEEDED

    def test_cancel_suspended_task(self, pipeline, orchestration_client):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            cancelled = await pipeline.cancel(task.id)
            with pytest.raises(TaskCancelledError):
                await pipeline.confirm(task.id, task.confirmation_token)
            with pytest.raises(InvalidTransitionError):
                await pipeline.cancel(task.id)
            return cancelled

        task = run_async(scenario())

        assert task.state == TaskState.FAILED
        assert task.failure_reason == FailureReason.CANCELLED
        assert orchestration_client.mutations == []

    def test_expire_overdue_sweep(self, pipeline, orchestration_client):
        _with_history(orchestration_client)
        _with_history(orchestration_client, name="web")

        async def scenario():
            stale = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            fresh = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/web"})
            await _expire_confirmation(pipeline, stale.id)
            expired = await pipeline.expire_overdue()
            return expired, await pipeline.get(stale.id), await pipeline.get(fresh.id)

        expired, stale, fresh = run_async(scenario())

        assert expired == 1
        assert stale.failure_reason == FailureReason.CONFIRMATION_EXPIRED
        assert fresh.state == TaskState.SUSPENDED

    def test_rollback_without_history_fails_after_confirmation(
        self, pipeline, orchestration_client
    ):
        orchestration_client.add(
            "api", "prod", "registry/api:v1", revisions=[Revision(number=1, image="registry/api:v1")]
        )

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            return await pipeline.confirm(task.id, task.confirmation_token)

        task = run_async(scenario())

        assert task.state == TaskState.FAILED
        assert pipeline.error_for(task.id).error_type is NoPreviousRevisionError


# ---------------------------------------------------------------------------
# retention
# ---------------------------------------------------------------------------


class TestRetention:
    def test_token_of_cancelled_task_is_reported_during_grace(
        self, pipeline, orchestration_client
    ):
        _with_history(orchestration_client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            await pipeline.cancel(task.id)
            with pytest.raises(TaskCancelledError):
                await pipeline.confirm_by_token(task.confirmation_token)

        run_async(scenario())

    def test_token_is_released_after_grace(self, services, orchestration_client):
        _with_history(orchestration_client)
        pipeline = AgentTaskPipeline(services, token_grace_seconds=0)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            await pipeline.cancel(task.id)
            with pytest.raises(ConfirmationMismatchError):
                await pipeline.confirm_by_token(task.confirmation_token)

        run_async(scenario())

        assert pipeline._tokens == {}
        assert pipeline._token_release_at == {}

    def test_oldest_finished_task_is_evicted_with_its_failure(self, services, llm):
        llm.error = UpstreamError("model unavailable")
        pipeline = AgentTaskPipeline(services, max_finished_tasks=1)
        payload = {"repository": "acme/api", "pr_number": 7}

        async def scenario():
            first = await pipeline.submit(TaskKind.CODE_REVIEW, payload)
            second = await pipeline.submit(TaskKind.CODE_REVIEW, payload)
            with pytest.raises(TaskNotFoundError):
                await pipeline.machine.get(first.id)
            return first, second

        first, second = run_async(scenario())

        assert pipeline.error_for(first.id) is None
        failure = pipeline.error_for(second.id)
        assert failure.error_type is UpstreamError
        assert "model unavailable" in failure.message
        assert not isinstance(failure, BaseException)

    def test_retention_must_keep_at_least_one_task(self, services):
        with pytest.raises(ValueError):
            AgentTaskPipeline(services, max_finished_tasks=0)


# ---------------------------------------------------------------------------
# security / cost / incident
# ---------------------------------------------------------------------------


class TestSupplementaryWorkflows:
    def test_security_review_notifies_on_high_risk(self, pipeline, llm, notifier):
        llm.default = json.dumps(
            {
                "risk_level": "high",
                "vulnerabilities": [{"type": "injection", "severity": "high"}],
                "summary": "SQL built from input",
            }
        )

        task = run_async(
            pipeline.submit(TaskKind.SECURITY, {"repository": "acme/api", "pr_number": 3})
        )

        assert task.result["risk_level"] == "high"
        assert task.result["total_vulnerabilities"] == 1
        assert len(notifier.messages) == 1

    def test_cost_review(self, pipeline, orchestration_client, llm):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=4)
        llm.default = json.dumps({"recommendations": ["Scale to 2"], "summary": "Overprovisioned"})

        task = run_async(pipeline.submit(TaskKind.COST, {"deployment_id": "prod/api"}))

        assert task.result["recommendations"] == ["Scale to 2"]
        assert task.result["replicas"] == 4

    def test_incident_auto_remediation_scales_up_and_pages(
        self, pipeline, orchestration_client, llm, notifier
    ):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=2)
        llm.default = json.dumps(
            {"root_cause": "memory leak", "impact": "slow checkout", "remediation_steps": []}
        )

        task = run_async(
            pipeline.submit(
                TaskKind.INCIDENT,
                {
                    "deployment_id": "prod/api",
                    "incident_type": "latency",
                    "severity": "critical",
                    "auto_remediation": True,
                },
            )
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["triage"]["root_cause"] == "memory leak"
        assert task.result["actions_taken"] == ["Scaled prod/api to 3 replica(s)"]
        assert task.result["paged"] is True
        assert orchestration_client.deployments[("prod", "api")].replicas == 3
        assert notifier.messages[-1][0] == "#oncall"

    def test_incident_without_remediation_leaves_deployment(
        self, pipeline, orchestration_client
    ):
        orchestration_client.add("api", "prod", "registry/api:1", replicas=2)

        task = run_async(
            pipeline.submit(
                TaskKind.INCIDENT,
                {"deployment_id": "prod/api", "incident_type": "latency", "severity": "low"},
            )
        )

        assert task.result["actions_taken"] == []
        assert orchestration_client.mutations == []


# ---------------------------------------------------------------------------
# events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_events_follow_task_lifecycle(self, services, orchestration_client):
        _with_history(orchestration_client)
        emitter = RecordingEmitter()
        pipeline = AgentTaskPipeline(services, emitter=emitter)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            await pipeline.confirm(task.id, task.confirmation_token)

        run_async(scenario())

        types = [e.event_type for e in emitter.events]
        assert types.count(EventType.CONFIRMATION_REQUESTED) == 1
        assert types[-1] == EventType.COMPLETION
        assert emitter.events[-1].details["state"] == "succeeded"
        assert all("confirmation_token" not in e.details for e in emitter.events)

    def test_broken_emitter_never_breaks_a_task(self, services, llm):
        llm.default = json.dumps(REVIEW)
        pipeline = AgentTaskPipeline(services, emitter=BrokenEmitter())

        task = run_async(
            pipeline.submit(TaskKind.CODE_REVIEW, {"repository": "acme/api", "pr_number": 7})
        )

        assert task.state == TaskState.SUCCEEDED
