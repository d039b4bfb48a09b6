# src/sparkboard/notifications/delivery.py

from __future__ import annotations

"""
Delivery channels.

The dispatcher hands each channel one {recipient, subject, body} at a time and
only looks at the boolean result; transport routing and formatting belong here.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class LogDeliveryChannel:
    """Writes every message to the log. Used for local runs ("log://" topics)."""

    def __init__(self, topic: str = "log://notifications") -> None:
        self.topic = topic

    async def deliver(self, *, recipient: str, subject: str, body: str) -> bool:
        logger.info("[%s] to=%s subject=%s\n%s", self.topic, recipient, subject, body)
        return True


class HttpDeliveryChannel:
    """
    Posts messages as JSON to an HTTP fan-out endpoint.

    2xx -> delivered; any other status or transport error -> False (retryable).
    """

    def __init__(
        self,
        topic_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.topic_url = topic_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=min(5.0, timeout_seconds),
                read=timeout_seconds,
                write=timeout_seconds,
                pool=min(5.0, timeout_seconds),
            )
        )

    async def deliver(self, *, recipient: str, subject: str, body: str) -> bool:
        payload = {"recipient": recipient, "subject": subject, "body": body}
        try:
            resp = await self._client.post(self.topic_url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Delivery transport error to=%s: %s", recipient, exc)
            return False

        if resp.is_success:
            logger.debug("Delivered to=%s status=%s", recipient, resp.status_code)
            return True

        logger.warning("Delivery rejected to=%s status=%s", recipient, resp.status_code)
        return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_delivery_channel(
    topic: str, *, timeout_seconds: float = 10.0
) -> LogDeliveryChannel | HttpDeliveryChannel:
    """Pick a channel from the delivery topic: http(s) URL or "log://..."."""
    t = (topic or "").strip()
    if t.startswith(("http://", "https://")):
        return HttpDeliveryChannel(t, timeout_seconds=timeout_seconds)
    if t and not t.startswith("log://"):
        logger.warning("Unrecognized delivery topic %r; logging messages instead", t)
    return LogDeliveryChannel(t or "log://notifications")
