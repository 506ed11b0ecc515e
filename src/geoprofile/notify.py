"""
Push notifications via ntfy.

Sends a short message whenever a reconciliation pushed or removed
profiles. Delivery failures are logged and never affect reconciliation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from geoprofile.core.reconciler import ReconciliationResult

if TYPE_CHECKING:
    from geoprofile.config import NotifyConfig


logger = logging.getLogger(__name__)


class NtfyNotifier:
    """Publishes reconciliation summaries to an ntfy topic."""

    def __init__(
        self,
        server: str = "https://ntfy.sh",
        topic: str = "geo-profile-dashboard",
        priority: int = 3,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.topic = topic
        self.priority = priority
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(cls, config: NotifyConfig) -> NtfyNotifier:
        """Create a notifier from configuration."""
        return cls(server=config.server, topic=config.topic, priority=config.priority)

    async def send(
        self,
        title: str,
        message: str,
        tags: list[str] | None = None,
    ) -> bool:
        """
        Publish one message.

        Returns:
            True if ntfy accepted the message
        """
        body: dict[str, Any] = {
            "topic": self.topic,
            "title": title,
            "message": message,
            "priority": self.priority,
        }
        if tags:
            body["tags"] = tags

        try:
            response = await self._client.post(self.server, json=body)
        except httpx.HTTPError as e:
            logger.error("Error sending ntfy notification: %s", e)
            return False

        if response.is_error:
            logger.error(
                "Error sending ntfy notification: %s %s",
                response.status_code, response.reason_phrase,
            )
            return False
        return True

    async def notify_result(self, result: ReconciliationResult) -> None:
        """Post-process hook: announce results that changed a device."""
        if not result.changed:
            return

        tags = ["phone", "check"] if result.profiles_pushed else ["phone", "x"]
        await self.send(
            title=f"Policy Applied: {result.policy_name}",
            message=result.summary(),
            tags=tags,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
