"""Messaging sink: a Slack incoming webhook, or chat.postMessage as a fallback."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .models import NotificationConfig, SlackConfig
from .slack_client import SlackClientWrapper

logger = logging.getLogger(__name__)


class NotificationManager:
    """Delivers plain-text alerts; ``send`` reports success and never raises."""

    def __init__(
        self,
        notification_config: NotificationConfig,
        slack_config: Optional[SlackConfig] = None,
        slack_client: Optional[SlackClientWrapper] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.notification_config = notification_config
        self.slack_config = slack_config or SlackConfig()
        self.slack_client = slack_client
        self._transport = transport

        if self.slack_client is None and self.slack_config.bot_token and not notification_config.slack_webhook:
            self.slack_client = SlackClientWrapper(self.slack_config.bot_token)

    @property
    def configured(self) -> bool:
        if self.notification_config.slack_webhook:
            return True
        return bool(self.slack_client and self._resolve_slack_channel())

    async def send(self, text: str) -> bool:
        """Send message either via webhook or chat.postMessage."""
        if self.notification_config.slack_webhook:
            return await self._post_webhook(text)

        channel = self._resolve_slack_channel()
        if not self.slack_client or not channel:
            logger.error("No messaging sink configured; alert dropped")
            return False
        return await self.slack_client.post_message(channel=channel, text=text)

    def _resolve_slack_channel(self) -> Optional[str]:
        channel = self.slack_config.channel
        if not channel:
            return None
        return self._normalize_channel_reference(channel)

    @staticmethod
    def _normalize_channel_reference(value: str) -> str:
        value = value.strip()
        if value.startswith("C") and len(value) > 5:
            return value  # already channel ID
        if value.startswith("#"):
            return value
        return f"#{value}"

    async def _post_webhook(self, text: str) -> bool:
        url = self.notification_config.slack_webhook
        try:
            async with httpx.AsyncClient(
                timeout=self.notification_config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json={"text": text})
        except httpx.HTTPError as error:
            logger.error("Error sending message to Slack: %s", error)
            return False

        if response.status_code != 200:
            logger.error("Slack webhook returned %s: %s", response.status_code, response.text[:200])
            return False
        return True
