"""Notification sinks for alert delivery."""

import logging
from typing import Optional, Protocol

import httpx

from ceylon_air.config import NOTIFICATION_WEBHOOK_URL, REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Anything that can deliver a titled message to the user."""

    async def send(self, title: str, body: str) -> None:
        ...


class LoggingNotificationSink:
    """Writes notifications to the application log."""

    async def send(self, title: str, body: str) -> None:
        logger.warning(f"{title}: {body}")


class WebhookNotificationSink:
    """POSTs notifications as JSON to a webhook.

    Delivery is fire-and-forget: failures are logged and swallowed so a
    broken webhook never fails a fetch cycle.
    """

    def __init__(self, url: str = NOTIFICATION_WEBHOOK_URL, client: Optional[httpx.AsyncClient] = None):
        """Initialize the webhook sink.

        Args:
            url: Webhook endpoint
            client: Shared HTTP client (creates one if None)
        """
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        self._owns_client = client is None

    async def send(self, title: str, body: str) -> None:
        try:
            response = await self.client.post(self.url, json={"title": title, "body": body})
            response.raise_for_status()
            logger.info(f"Notification delivered: {title}")
        except httpx.HTTPStatusError as e:
            logger.error(f"Webhook rejected notification: {e.response.status_code} - {e.response.text}")
        except httpx.RequestError as e:
            logger.error(f"Webhook request failed: {e}")

    async def aclose(self):
        """Close the HTTP client if this sink created it."""
        if self._owns_client:
            await self.client.aclose()


def create_notification_sink(url: str = NOTIFICATION_WEBHOOK_URL):
    """Webhook sink when a URL is configured, log sink otherwise."""
    if url:
        logger.info(f"Delivering notifications to webhook {url}")
        return WebhookNotificationSink(url)
    logger.info("No notification webhook configured, alerts will be logged")
    return LoggingNotificationSink()
