"""
Webhook Sink - HTTP POST delivery for the webhook channel.
"""

import logging
from datetime import datetime, timezone

import httpx

from pulsemax.core.domain.alert import Alert
from pulsemax.core.domain.settings import WebhookSettings
from pulsemax.core.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)


class WebhookSink(NotificationSink):
    """
    POSTs `{"alert": ..., "timestamp": ...}` as JSON to the configured URL.
    """

    channel = "webhook"

    def __init__(self, settings: WebhookSettings | None = None, timeout: float = 10.0):
        self.settings = settings or WebhookSettings()
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.settings.headers,
            )
        return self._client

    async def deliver(self, alert: Alert) -> bool:
        if not self.settings.url:
            logger.warning(f"Webhook URL not configured; alert {alert.id} not sent")
            return False

        client = await self._get_client()
        payload = {
            "alert": alert.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        try:
            response = await client.post(self.settings.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery of alert {alert.id} failed: {e}")
            return False

        logger.info(f"Webhook delivered alert {alert.id} ({response.status_code})")
        return True

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
