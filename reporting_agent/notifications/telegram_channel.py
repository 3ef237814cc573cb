"""Telegram implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging

import telegram

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


class TelegramChannel:
    """Sends notifications via the Telegram Bot API."""

    def __init__(self, bot: telegram.Bot) -> None:
        self._bot = bot

    @property
    def name(self) -> str:
        return "telegram"

    async def send(self, address: str, message: str, *, subject: str | None = None) -> bool:
        """Send a plain text message to a Telegram chat id."""
        text = f"{subject}\n\n{message}" if subject else message
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
        try:
            await self._bot.send_message(chat_id=int(address), text=text)
            return True
        except Exception:
            logger.exception("TelegramChannel.send failed for chat_id=%s", address)
            return False
