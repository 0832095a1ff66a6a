"""Async GitHub REST client used by the review and test-writing workflows.

The workflows need four endpoints: the unified diff of a pull request, the
list of files it touches, the content of a file at a ref, and issue
comments. Transient failures (5xx,
408, timeouts, dropped connections) are retried through the same
RetryPolicy that guards orchestration calls. An exhausted rate limit is
reported as RateLimitError and left to the caller.
"""

import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from src.devops_agent.errors import NotFoundError, UpstreamError, ValidationError
from src.devops_agent.orchestration.retry import RetryPolicy


logger = logging.getLogger(__name__)


DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
FILES_PAGE_SIZE = 100
# GitHub stops listing pull request files after 3000 entries
MAX_FILES_PAGES = 30
TRANSIENT_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


def split_repository(repository: str) -> Tuple[str, str]:
    """Split ``owner/repo`` into its parts.

    Raises:
        ValidationError: If the value is not in owner/repo form.
    """
    owner, sep, name = repository.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValidationError(
            f"repository must be in format owner/repo, got {repository!r}"
        )
    return owner, name


def _int_header(response: httpx.Response, name: str) -> Optional[int]:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class GitHubAPIError(UpstreamError):
    """A GitHub call that did not produce a usable response.

    ``retryable`` is true for connection failures (no status) and transient
    status codes; any other 4xx is a permanent failure.
    """

    public_message = "GitHub API request failed"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        super().__init__(
            message,
            status_code=status_code,
            details={"status_code": status_code, "request_url": request_url},
        )
        self.response_body = response_body
        self.request_url = request_url
        self.retryable = status_code is None or status_code in TRANSIENT_STATUS_CODES


class RateLimitError(GitHubAPIError):
    """The token's quota is exhausted.

    Not retried by the client; ``retry_after`` says how long the quota
    takes to refill, which is usually far longer than a backoff step.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after
        self.retryable = False

    @classmethod
    def from_response(cls, response: httpx.Response) -> "RateLimitError":
        reset_at = _int_header(response, "x-ratelimit-reset")
        retry_after = _int_header(response, "retry-after")
        if retry_after is None and reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))
        return cls(
            "GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and _int_header(response, "x-ratelimit-remaining") == 0
    )


class GitHubClient:
    """Thin async client over github.com or a GitHub Enterprise API root.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as github:
        ...     diff = await github.get_pull_request_diff("acme", "api", 42)
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy(base_delay=1.0, max_delay=30.0)
        self.timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _session(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                    "User-Agent": "devops-agent",
                },
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """One attempt: send the request and classify the response."""
        try:
            response = await self._session().request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise GitHubAPIError(
                f"GitHub {method} {path} failed: {e}",
                request_url=f"{self.base_url}{path}",
            ) from e

        if _is_rate_limited(response):
            error = RateLimitError.from_response(response)
            logger.warning(
                "GitHub rate limit exhausted",
                extra={"path": path, "retry_after": error.retry_after},
            )
            raise error

        if response.status_code == 404:
            raise NotFoundError(f"GitHub resource not found: {path}", details={"path": path})

        if response.is_error:
            logger.warning(
                "GitHub returned an error",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise GitHubAPIError(
                f"GitHub {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self.retry_policy.run(
            f"github {method} {path}",
            lambda: self._send(method, path, **kwargs),
        )

    async def get_pull_request_diff(self, owner: str, repo: str, pr_number: int) -> str:
        """Return the unified diff of a pull request as text."""
        logger.info(
            "Fetching pull request diff",
            extra={"repository": f"{owner}/{repo}", "pr_number": pr_number},
        )
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pr_number}",
            headers={"Accept": DIFF_MEDIA_TYPE},
        )
        return response.text

    async def list_pull_request_files(
        self, owner: str, repo: str, pr_number: int
    ) -> List[str]:
        """Return the paths a pull request adds or modifies, in listing order.

        Removed files are skipped since there is nothing left to read.
        """
        paths: List[str] = []
        for page in range(1, MAX_FILES_PAGES + 1):
            response = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/pulls/{pr_number}/files",
                params={"per_page": FILES_PAGE_SIZE, "page": page},
            )
            batch = response.json()
            paths.extend(
                entry["filename"] for entry in batch if entry.get("status") != "removed"
            )
            if len(batch) < FILES_PAGE_SIZE:
                break

        logger.info(
            "Listed pull request files",
            extra={
                "repository": f"{owner}/{repo}",
                "pr_number": pr_number,
                "file_count": len(paths),
            },
        )
        return paths

    async def get_file_content(
        self,
        owner: str,
        repo: str,
        file_path: str,
        ref: Optional[str] = None,
    ) -> str:
        """Fetch a file and decode it to text.

        Args:
            owner: Repository owner.
            repo: Repository name.
            file_path: Path inside the repository; a leading slash is ignored.
            ref: Optional branch, tag or commit SHA.

        Raises:
            NotFoundError: If the path does not exist at ``ref``.
            GitHubAPIError: If the path is a directory or the payload is
                not valid UTF-8 base64.
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{file_path.lstrip('/')}",
            params={"ref": ref} if ref else None,
        )
        payload = response.json()
        if not isinstance(payload, dict) or "content" not in payload:
            raise GitHubAPIError(
                f"Path is not a file: {file_path}",
                status_code=response.status_code,
                request_url=str(response.url),
            )

        if payload.get("encoding", "base64") != "base64":
            return payload["content"]
        try:
            return base64.b64decode(payload["content"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise GitHubAPIError(
                f"Could not decode {file_path}: {e}",
                status_code=response.status_code,
                request_url=str(response.url),
            ) from e

    async def create_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> Dict[str, Any]:
        """Post ``body`` as a comment on an issue or pull request."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json={"body": body},
        )
        comment = response.json()
        logger.info(
            "Posted comment",
            extra={
                "repository": f"{owner}/{repo}",
                "issue_number": issue_number,
                "comment_id": comment.get("id"),
            },
        )
        return comment
