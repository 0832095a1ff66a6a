"""Error taxonomy shared by the controller, the task pipeline and the API.

Every error carries a detailed ``message`` (shown in development) and a
coarse ``public_message`` (shown in production), plus a ``retryable`` flag
that the retry policy consults before backing off.

Classification:
- ValidationError: malformed input, never retried
- NotFoundError: missing deployment or revision, never retried
- NoPreviousRevisionError / RevisionImageMissingError: rollback business rules
- ConflictError: concurrent mutation, retried a bounded number of times
- UpstreamError: transient collaborator failure, retried with backoff
- OperationTimeoutError: a timed-out call, treated as transient
- ConfirmationMismatchError / ConfirmationExpiredError: confirmation gating
- TaskCancelledError: the task was aborted while suspended
- NoFilesAvailableError: a fan-out fetch produced no usable input
- TaskFailedError: re-reports the recorded failure of a finished task
"""

from typing import Any, Dict, Optional, Type


class DevOpsAgentError(Exception):
    """Base class for all errors raised by the agent core.

    Attributes:
        message: Detailed, human-readable error description.
        details: Optional structured context for logs and events.
    """

    public_message = "Internal server error"
    retryable = False

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.public_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DevOpsAgentError):
    """Raised when a request is malformed (e.g. negative replica count)."""

    public_message = "Invalid request"


class NotFoundError(DevOpsAgentError):
    """Raised when a deployment, revision or task does not exist."""

    public_message = "Resource not found"


class NoPreviousRevisionError(DevOpsAgentError):
    """Raised when a rollback finds fewer than two revisions."""

    public_message = "No previous version available for rollback"


class RevisionImageMissingError(DevOpsAgentError):
    """Raised when the rollback target revision has no resolvable image."""

    public_message = "Could not determine previous image version"


class ConflictError(DevOpsAgentError):
    """Raised when a concurrent mutation is observed for a deployment."""

    public_message = "Conflicting operation in progress"
    retryable = True


class UpstreamError(DevOpsAgentError):
    """Raised when a collaborator (cluster, GitHub, LLM) fails transiently.

    Attributes:
        status_code: HTTP status code from the upstream, if any.
    """

    public_message = "Upstream service unavailable"
    retryable = True

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class OperationTimeoutError(UpstreamError):
    """Raised when a collaborator call exceeds its timeout."""

    public_message = "Upstream service timed out"


class ConfirmationMismatchError(DevOpsAgentError):
    """Raised when a confirmation token does not match the issued one."""

    public_message = "Confirmation token does not match"


class ConfirmationExpiredError(DevOpsAgentError):
    """Raised when a confirmation token is used after its TTL elapsed."""

    public_message = "Confirmation token expired"


class TaskCancelledError(DevOpsAgentError):
    """Raised when confirming a task that was already cancelled."""

    public_message = "Task was cancelled"


class NoFilesAvailableError(DevOpsAgentError):
    """Raised when none of the requested files could be fetched."""

    public_message = "No files could be fetched"


class TaskFailedError(DevOpsAgentError):
    """Raised when reporting a task that failed in the background.

    Carries the class of the original error in ``error_type`` so it maps to
    the same HTTP status and public message the original would have.
    """

    def __init__(
        self,
        error_type: Type[BaseException],
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.error_type = error_type
        self.public_message = getattr(
            error_type, "public_message", DevOpsAgentError.public_message
        )
