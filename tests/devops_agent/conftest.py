"""Shared fixtures for the DevOps agent tests."""

import pytest

from src.devops_agent.config import AgentSettings
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


@pytest.fixture
def orchestration_client() -> FakeOrchestrationClient:
    return FakeOrchestrationClient()


@pytest.fixture
def code_hosting() -> FakeCodeHosting:
    return FakeCodeHosting()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def health_checker() -> FakeHealthChecker:
    return FakeHealthChecker()


@pytest.fixture
def services(orchestration_client, code_hosting, llm, notifier, health_checker) -> WorkflowServices:
    return WorkflowServices(
        controller=make_controller(orchestration_client),
        code_hosting=code_hosting,
        llm=llm,
        notifier=notifier,
        health_checker=health_checker,
        default_channel="#devops",
        paging_channel="#oncall",
        fetch_concurrency=2,
    )


@pytest.fixture
def pipeline(services) -> AgentTaskPipeline:
    return AgentTaskPipeline(services, confirmation_ttl_seconds=300)


@pytest.fixture
def agent_settings() -> AgentSettings:
    return AgentSettings(github_token="ghp_test", llm_url="http://llm.local/v1")
