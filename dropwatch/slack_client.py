"""Thin wrapper around slack_sdk.WebClient used when no webhook is configured."""

from __future__ import annotations

import asyncio
import logging

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

logger = logging.getLogger(__name__)


class SlackClientWrapper:
    """Posts plain-text messages through chat.postMessage."""

    def __init__(self, token: str, rate_limit_sleep: float = 1.0, client: WebClient | None = None):
        self.client = client or WebClient(token=token)
        self.rate_limit_sleep = rate_limit_sleep

    async def post_message(self, channel: str, text: str) -> bool:
        try:
            await self._call_async(self.client.chat_postMessage, channel=channel, text=text)
            return True
        except (SlackApiError, OSError) as error:
            logger.error("chat.postMessage to %s failed: %s", channel, error)
            return False

    async def _call_async(self, func, *args, **kwargs):
        """Run slack_sdk WebClient methods in thread executor with simple retry."""

        loop = asyncio.get_running_loop()
        attempts = 0
        while True:
            attempts += 1
            try:
                return await loop.run_in_executor(None, lambda: func(*args, **kwargs))
            except SlackApiError as error:
                if error.response is not None and error.response.status_code == 429 and attempts < 3:
                    retry_after = int(error.response.headers.get("Retry-After", self.rate_limit_sleep))
                    await asyncio.sleep(retry_after)
                    continue
                raise
