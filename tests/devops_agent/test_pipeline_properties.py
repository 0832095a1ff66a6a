"""Property-based tests for the agent task pipeline.

Properties:
- Confirmation gating: a rollback never mutates the deployment unless the
  exact, unexpired token is presented
- TestWriter partial failure: the aggregate reflects exactly the files
  that could be fetched, independent of fan-out width
- Terminal states have no outgoing transitions
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

from hypothesis import assume, given, settings, strategies as st

from src.devops_agent.errors import ConfirmationExpiredError, ConfirmationMismatchError
from src.devops_agent.orchestration.models import Revision
from src.devops_agent.tasks.models import (
    VALID_TRANSITIONS,
    FailureReason,
    TaskKind,
    TaskState,
    is_valid_transition,
)
from src.devops_agent.tasks.pipeline import AgentTaskPipeline
from src.devops_agent.tasks.workflows import WorkflowServices

from fakes import (
    FakeCodeHosting,
    FakeHealthChecker,
    FakeLLM,
    FakeOrchestrationClient,
    RecordingNotifier,
    make_controller,
)


def run_async(coro):
    return asyncio.run(coro)


def _pipeline(client, code_hosting=None, llm=None, fetch_concurrency=5):
    services = WorkflowServices(
        controller=make_controller(client),
        code_hosting=code_hosting or FakeCodeHosting(),
        llm=llm or FakeLLM(),
        notifier=RecordingNotifier(),
        health_checker=FakeHealthChecker(),
        fetch_concurrency=fetch_concurrency,
    )
    return AgentTaskPipeline(services, confirmation_ttl_seconds=60)


def _client_with_history():
    client = FakeOrchestrationClient()
    client.add(
        "api",
        "prod",
        "registry/api:v2",
        revisions=[
            Revision(number=1, image="registry/api:v1"),
            Revision(number=2, image="registry/api:v2"),
        ],
    )
    return client


# =============================================================================
# Confirmation gating
# =============================================================================


class TestConfirmationGating:
    @settings(max_examples=50, deadline=None)
    @given(guesses=st.lists(st.text(min_size=0, max_size=40), min_size=1, max_size=5))
    def test_wrong_tokens_never_mutate(self, guesses):
        client = _client_with_history()
        pipeline = _pipeline(client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            for guess in guesses:
                assume(guess != task.confirmation_token)
                try:
                    await pipeline.confirm(task.id, guess)
                except ConfirmationMismatchError:
                    pass
                else:
                    raise AssertionError("confirmed with a wrong token")
            return await pipeline.get(task.id)

        task = run_async(scenario())

        assert task.state == TaskState.SUSPENDED
        assert client.mutations == []

    @settings(max_examples=25, deadline=None)
    @given(overdue_seconds=st.integers(min_value=0, max_value=86_400))
    def test_expired_tokens_never_mutate(self, overdue_seconds):
        client = _client_with_history()
        pipeline = _pipeline(client)

        async def scenario():
            task = await pipeline.submit(TaskKind.ROLLBACK, {"deployment_id": "prod/api"})
            token = task.confirmation
            issued = datetime.now(timezone.utc) - timedelta(
                seconds=token.ttl_seconds + overdue_seconds
            )
            await pipeline.machine.update(
                task.id, confirmation=token.model_copy(update={"issued_at": issued})
            )
            try:
                await pipeline.confirm(task.id, token.value)
            except ConfirmationExpiredError:
                pass
            else:
                raise AssertionError("confirmed with an expired token")
            return await pipeline.get(task.id)

        task = run_async(scenario())

        assert task.state == TaskState.FAILED
        assert task.failure_reason == FailureReason.CONFIRMATION_EXPIRED
        assert client.mutations == []


# =============================================================================
# TestWriter partial failure
# =============================================================================


file_names = st.from_regex(r"src/[a-z]{1,8}\.py", fullmatch=True)


class TestWriteTestsPartialFailure:
    def test_one_failed_fetch_out_of_three(self):
        hosting = FakeCodeHosting(files={"src/a.py": "a = 1", "src/c.py": "c = 3"})
        llm = FakeLLM(
            default=json.dumps({"tests_generated": 3, "test_files": [], "test_framework": "pytest"})
        )
        pipeline = _pipeline(FakeOrchestrationClient(), code_hosting=hosting, llm=llm)

        task = run_async(
            pipeline.submit(
                TaskKind.TEST_WRITER,
                {
                    "repository": "acme/api",
                    "changed_files": ["src/a.py", "src/b.py", "src/c.py"],
                },
            )
        )

        assert task.state == TaskState.SUCCEEDED
        assert task.result["tests_generated"] == 6
        assert task.result["files_processed"] == 2
        assert [f["file"] for f in task.result["failed_files"]] == ["src/b.py"]
        assert len(llm.prompts) == 2

    @settings(max_examples=40, deadline=None)
    @given(
        files=st.lists(file_names, min_size=1, max_size=8, unique=True),
        data=st.data(),
        limit=st.integers(min_value=1, max_value=4),
    )
    def test_aggregate_counts_only_fetched_files(self, files, data, limit):
        available = data.draw(st.lists(st.sampled_from(files), unique=True))
        hosting = FakeCodeHosting(files={f: f"# {f}" for f in available})
        llm = FakeLLM(
            default=json.dumps({"tests_generated": 2, "test_files": [], "test_framework": "pytest"})
        )
        pipeline = _pipeline(
            FakeOrchestrationClient(), code_hosting=hosting, llm=llm, fetch_concurrency=limit
        )

        task = run_async(
            pipeline.submit(TaskKind.TEST_WRITER, {"repository": "acme/api", "changed_files": files})
        )

        if not available:
            assert task.state == TaskState.FAILED
            assert task.failure_reason == FailureReason.NO_FILES_AVAILABLE
            return

        assert task.state == TaskState.SUCCEEDED
        assert task.result["files_processed"] == len(available)
        assert task.result["tests_generated"] == 2 * len(available)
        assert task.result["coverage_estimate"] == min(85, 2 * len(available) * 15)
        assert sorted(f["file"] for f in task.result["failed_files"]) == sorted(
            set(files) - set(available)
        )


# =============================================================================
# State machine
# =============================================================================


class TestTerminalStates:
    @given(target=st.sampled_from(list(TaskState)))
    def test_terminal_states_have_no_transitions(self, target):
        for terminal in (TaskState.SUCCEEDED, TaskState.FAILED):
            assert VALID_TRANSITIONS[terminal] == []
            assert not is_valid_transition(terminal, target)
