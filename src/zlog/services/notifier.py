"""Notification sink for subscription lifecycle events.

The federation core only needs ``notify(event, context)``; where the message
ends up (a Slack-style chat webhook, or just the log) is configuration.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from zlog.core.settings import settings

logger = logging.getLogger(__name__)

SUBSCRIBER_CREATED = "subscriber.created"
SUBSCRIBER_REACTIVATED = "subscriber.reactivated"
SUBSCRIPTION_REACTIVATED = "subscription.reactivated"
SUBSCRIPTION_DEACTIVATED = "subscription.deactivated"
SUBSCRIPTION_REVOKED = "subscription.revoked"

_TITLES = {
    SUBSCRIBER_CREATED: "New subscriber",
    SUBSCRIBER_REACTIVATED: "Subscriber reactivated",
    SUBSCRIPTION_REACTIVATED: "Subscription reactivated",
    SUBSCRIPTION_DEACTIVATED: "Subscription deactivated after repeated failures",
    SUBSCRIPTION_REVOKED: "Subscription revoked by remote site",
}


class Notifier(Protocol):
    """Anything able to report a subscription lifecycle event."""

    async def notify(self, event: str, context: Mapping[str, Any]) -> None: ...


def format_message(event: str, context: Mapping[str, Any]) -> str:
    """Render a one-message summary of ``event`` for chat sinks."""
    title = _TITLES.get(event, event)
    details = ", ".join(f"{key}={value}" for key, value in sorted(context.items()))
    return f"{title} ({details})" if details else title


class LoggingNotifier:
    """Notifier that only writes to the log."""

    async def notify(self, event: str, context: Mapping[str, Any]) -> None:
        logger.info("Federation notification: %s", format_message(event, context))


class ChatWebhookNotifier:
    """Notifier posting ``{"text": ...}`` to a Slack-compatible incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.webhook_url = webhook_url
        self._client = client
        self._timeout = timeout_seconds

    async def notify(self, event: str, context: Mapping[str, Any]) -> None:
        payload = {"text": format_message(event, context)}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self.webhook_url, json=payload, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            logger.warning("Notification %s could not be delivered: %s", event, exc)


def build_notifier() -> Notifier:
    """Return the notifier configured for this instance."""
    if settings.notify_webhook_url:
        return ChatWebhookNotifier(settings.notify_webhook_url)
    return LoggingNotifier()
