"""Collaborator interfaces consumed by the controller and the task pipeline.

Every collaborator is fallible and none of them retries on its own behalf;
retry policy belongs to the caller. Concrete implementations are wired in
``main.py`` and replaced by AsyncMock test doubles in the test suite.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from src.devops_agent.orchestration.models import DeploymentStatus


@runtime_checkable
class CodeHostingClient(Protocol):
    """Read pull requests and files, and post review comments."""

    async def get_pull_request_diff(self, owner: str, repo: str, pr_number: int) -> str:
        ...

    async def list_pull_request_files(
        self, owner: str, repo: str, pr_number: int
    ) -> List[str]:
        ...

    async def get_file_content(
        self, owner: str, repo: str, file_path: str, ref: Optional[str] = None
    ) -> str:
        ...

    async def create_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> Dict[str, Any]:
        ...


@runtime_checkable
class CodeIntelligenceClient(Protocol):
    """Text completion against a language model."""

    async def complete(self, prompt: str, model: Optional[str] = None) -> str:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Deliver a message to a named channel."""

    async def send(self, channel: str, message: str) -> None:
        ...


class HealthMeasurement(BaseModel):
    """One health sample of a deployment.

    ``error`` is set instead of raising when the sample could not be taken.
    """

    response_time_ms: Optional[float] = Field(default=None, ge=0)
    error_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    status_code: Optional[int] = None
    checked_at: datetime
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class HealthChecker(Protocol):
    """Sample health numbers for a deployment."""

    async def sample(self, deployment: DeploymentStatus) -> HealthMeasurement:
        ...
