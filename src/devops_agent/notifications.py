"""Notification delivery.

- LoggingNotifier: writes notifications to the log (no webhook configured)
- WebhookNotifier: POSTs ``{channel, text, timestamp}`` to an incoming webhook
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from src.devops_agent.errors import UpstreamError


logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Notifier that only logs messages."""

    async def send(self, channel: str, message: str) -> None:
        logger.info(
            "Notification",
            extra={"channel": channel, "notification": message},
        )

    async def close(self) -> None:
        pass


class WebhookNotifier:
    """Notifier backed by a chat incoming-webhook.

    Raises:
        UpstreamError: From ``send`` when the webhook rejects the message or
            cannot be reached.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(self, channel: str, message: str) -> None:
        payload = {
            "channel": channel,
            "text": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await self._client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Notification delivery failed: {e}") from e

        if response.status_code >= 400:
            raise UpstreamError(
                f"Notification webhook returned {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug("Notification sent", extra={"channel": channel})

    async def close(self) -> None:
        await self._client.aclose()
