"""HTTP health checker for deployments.

Issues one GET against the deployment's health endpoint and records the
latency. Failures are returned inside the HealthMeasurement so a monitor
cycle can still produce a snapshot.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from src.devops_agent.collaborators import HealthMeasurement
from src.devops_agent.orchestration.models import DeploymentStatus


logger = logging.getLogger(__name__)


class HttpHealthChecker:
    """HealthChecker that measures an HTTP health endpoint.

    Attributes:
        url_template: Health URL, formatted with ``name`` and ``namespace``.
        timeout: Request timeout in seconds.

    Example:
        >>> checker = HttpHealthChecker("http://{name}.{namespace}.svc:8080/health")
        >>> measurement = await checker.sample(deployment)
        >>> measurement.response_time_ms
        12.4
    """

    def __init__(
        self,
        url_template: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def url_for(self, deployment: DeploymentStatus) -> str:
        return self.url_template.format(
            name=deployment.name, namespace=deployment.namespace
        )

    async def sample(self, deployment: DeploymentStatus) -> HealthMeasurement:
        url = self.url_for(deployment)
        started = time.perf_counter()
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning(
                "Health check failed",
                extra={
                    "deployment_id": deployment.deployment_id,
                    "url": url,
                    "error": str(e),
                },
            )
            return HealthMeasurement(
                checked_at=datetime.now(timezone.utc),
                error=f"{type(e).__name__}: {e}",
            )

        elapsed_ms = (time.perf_counter() - started) * 1000
        # A single request either failed or did not
        error_rate = 0.0 if response.status_code < 500 else 1.0
        return HealthMeasurement(
            response_time_ms=round(elapsed_ms, 2),
            error_rate=error_rate,
            status_code=response.status_code,
            checked_at=datetime.now(timezone.utc),
        )

    async def close(self) -> None:
        await self._client.aclose()
