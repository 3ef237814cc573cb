"""Slack implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from slack_sdk.web.async_client import AsyncWebClient

logger = logging.getLogger(__name__)


class SlackChannel:
    """Sends notifications via the Slack API as direct messages."""

    def __init__(self, client: AsyncWebClient) -> None:
        self._client = client

    @property
    def name(self) -> str:
        return "slack"

    async def _open_dm(self, user_id: str) -> str | None:
        """Open (or retrieve) a DM channel with a user. Returns channel ID."""
        try:
            resp = await self._client.conversations_open(users=[user_id])
            return resp["channel"]["id"]
        except Exception:
            logger.exception("SlackChannel: failed to open DM for user_id=%s", user_id)
            return None

    async def send(self, address: str, message: str, *, subject: str | None = None) -> bool:
        """Send a message to a Slack user via DM."""
        channel_id = await self._open_dm(address)
        if not channel_id:
            return False
        text = f"*{subject}*\n{message}" if subject else message
        try:
            await self._client.chat_postMessage(channel=channel_id, text=text)
            return True
        except Exception:
            logger.exception("SlackChannel.send failed for user_id=%s", address)
            return False
