"""Agent configuration using pydantic-settings.

This module defines the AgentSettings class that reads configuration
from environment variables with the DEVOPS_AGENT_ prefix. Only the
GitHub token and the LLM endpoint are required; everything else has a
development-friendly default.
"""

from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentSettings(BaseSettings):
    """DevOps agent configuration from environment variables.

    All environment variables are prefixed with DEVOPS_AGENT_
    (e.g., DEVOPS_AGENT_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token for diffs, file contents and comments
    - llm_url: URL of the OpenAI-compatible LLM endpoint
    """

    model_config = SettingsConfigDict(
        env_prefix="DEVOPS_AGENT_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    # Controls error detail in HTTP responses
    environment: Literal["development", "production"] = "development"

    # Bearer token required on API routes; auth is disabled when unset
    api_token: Optional[str] = None

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    llm_url: str

    llm_model: str = "gpt-4o-mini"

    llm_api_key: str = "not-needed"

    llm_timeout_seconds: float = 60.0

    # -------------------------------------------------------------------------
    # Kubernetes Configuration
    # -------------------------------------------------------------------------
    # Explicit kubeconfig file; falls back to the default loading rules
    kubeconfig_path: Optional[str] = None

    # Use the pod service account instead of a kubeconfig
    in_cluster: bool = False

    orchestration_timeout_seconds: float = 30.0

    orchestration_max_retries: int = 3

    retry_base_delay: float = 0.5

    retry_max_delay: float = 8.0

    # -------------------------------------------------------------------------
    # Task Pipeline Configuration
    # -------------------------------------------------------------------------
    confirmation_ttl_seconds: int = 300

    # Finished tasks kept for lookup before the oldest are dropped
    max_finished_tasks: int = 1000

    # Worker limit for TestWriter file fetches
    fetch_concurrency: int = 5

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------
    # Incoming-webhook URL for notifications; notifications are logged when unset
    notification_webhook_url: Optional[str] = None

    default_notification_channel: str = "#devops-alerts"

    paging_channel: str = "#devops-oncall"

    # Health endpoint template, formatted with name and namespace
    health_url_template: str = "http://{name}.{namespace}.svc.cluster.local:8080/health"

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 3000

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token")
    @classmethod
    def validate_github_token(cls, v: str) -> str:
        """Validate that GitHub token is not empty."""
        if not v or not v.strip():
            raise ValueError("github_token cannot be empty")
        return v

    @field_validator("llm_url", "github_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate that endpoint URLs use http or https."""
        if not v or not v.strip():
            raise ValueError("URL cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v

    @field_validator("notification_webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the optional notification webhook URL."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                "notification_webhook_url must start with http:// or https://"
            )
        return v

    @field_validator(
        "orchestration_timeout_seconds",
        "llm_timeout_seconds",
        "retry_base_delay",
        "retry_max_delay",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate that durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("orchestration_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate that the retry count is not negative."""
        if v < 0:
            raise ValueError("orchestration_max_retries cannot be negative")
        return v

    @field_validator("confirmation_ttl_seconds", "fetch_concurrency", "max_finished_tasks")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        """Validate TTL, concurrency and retention limits."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def is_production(self) -> bool:
        """Whether error responses should hide internal details."""
        return self.environment == "production"


def get_settings() -> AgentSettings:
    """Create and return AgentSettings instance.

    Returns:
        AgentSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return AgentSettings()
