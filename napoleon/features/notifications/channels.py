"""
Notification channel senders.

push, email and sms are handed to a log-backed sender. slack and teams
post to the incoming webhook configured in the user's preferences.
"""

import httpx

from napoleon.config import settings
from napoleon.features.notifications.domain import ChannelSettings, SmartNotification
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ChannelDeliveryError(Exception):
    """Raised when a single channel fails to deliver."""

    def __init__(self, message: str, channel: str, recoverable: bool = True):
        super().__init__(message)
        self.channel = channel
        self.recoverable = recoverable


class LogChannelSender:
    """Records the delivery in the structured log."""

    def __init__(self, channel: str):
        self.channel = channel

    async def send(self, notification: SmartNotification, channel_settings: ChannelSettings | None):
        logger.info(
            "Notification sent",
            channel=self.channel,
            notification_id=notification.id,
            user_id=notification.user_id,
            priority=notification.priority,
            title=notification.title,
            has_target=bool(channel_settings and channel_settings.target),
        )


class WebhookChannelSender:
    """Posts the notification to a Slack or Teams incoming webhook."""

    def __init__(self, channel: str, http_client: httpx.AsyncClient):
        self.channel = channel
        self.http_client = http_client

    def _payload(self, notification: SmartNotification) -> dict:
        if self.channel == "teams":
            return {
                "@type": "MessageCard",
                "@context": "https://schema.org/extensions",
                "summary": notification.title,
                "title": notification.title,
                "text": notification.content,
            }
        return {"text": f"*{notification.title}*\n{notification.content}"}

    async def send(self, notification: SmartNotification, channel_settings: ChannelSettings | None):
        webhook_url = channel_settings.target if channel_settings else None
        if not webhook_url:
            raise ChannelDeliveryError(
                f"No {self.channel} webhook configured", channel=self.channel, recoverable=False
            )

        try:
            response = await self.http_client.post(
                webhook_url,
                json=self._payload(notification),
                timeout=settings.NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ChannelDeliveryError(
                f"{self.channel} webhook returned {e.response.status_code}",
                channel=self.channel,
                recoverable=e.response.status_code >= 500,
            ) from e
        except httpx.RequestError as e:
            raise ChannelDeliveryError(
                f"{self.channel} webhook request failed: {e}", channel=self.channel
            ) from e

        logger.info(
            "Notification posted to webhook",
            channel=self.channel,
            notification_id=notification.id,
            status_code=response.status_code,
        )


ChannelSender = LogChannelSender | WebhookChannelSender


def build_channel_senders(http_client: httpx.AsyncClient) -> dict[str, ChannelSender]:
    return {
        "push": LogChannelSender("push"),
        "email": LogChannelSender("email"),
        "sms": LogChannelSender("sms"),
        "slack": WebhookChannelSender("slack", http_client),
        "teams": WebhookChannelSender("teams", http_client),
    }
