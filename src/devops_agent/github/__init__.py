"""GitHub API client for pull request diffs, file contents, comments and statuses."""

from src.devops_agent.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    split_repository,
)

__all__ = [
    "GitHubClient",
    "GitHubAPIError",
    "RateLimitError",
    "split_repository",
]
