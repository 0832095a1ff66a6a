"""Bounded retry with exponential backoff and full jitter.

Only errors flagged ``retryable`` (ConflictError, UpstreamError and
OperationTimeoutError) are retried; everything else surfaces on the first
attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from src.devops_agent.errors import DevOpsAgentError


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry settings shared by the orchestration and GitHub clients.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff delay with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def is_retryable(exc: BaseException) -> bool:
        return isinstance(exc, DevOpsAgentError) and exc.retryable

    async def run(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``fn`` until it succeeds, fails permanently, or retries run out.

        Args:
            operation: Name used in log records.
            fn: Zero-argument coroutine factory; called once per attempt.

        Returns:
            The value returned by the first successful attempt.

        Raises:
            DevOpsAgentError: The last error once retries are exhausted, or
                the first non-retryable error.
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await fn()
            except DevOpsAgentError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    if exc.retryable:
                        logger.error(
                            "Operation failed after all retries",
                            extra={
                                "operation": operation,
                                "max_retries": self.max_retries,
                                "error": str(exc),
                                "error_type": type(exc).__name__,
                            },
                        )
                    raise
                delay = self.calculate_backoff(attempt)
                logger.warning(
                    "Retryable error, backing off",
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "max_retries": self.max_retries,
                        "delay": delay,
                        "error_type": type(exc).__name__,
                    },
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")
