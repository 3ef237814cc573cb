"""NotificationRouter: resolves recipient addresses to registered channels."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reporting_agent.errors import NotificationError, ValidationError

if TYPE_CHECKING:
    from reporting_agent.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)

KNOWN_CHANNELS = frozenset({"email", "telegram", "slack"})


def parse_recipient(recipient: str) -> tuple[str, str]:
    """Split a recipient into ``(channel, address)``.

    ``"telegram:12345"`` -> ``("telegram", "12345")``; a bare address with an
    ``@`` is an e-mail address. Raises ValidationError for anything else.
    """
    if not isinstance(recipient, str) or not recipient.strip():
        msg = f"Invalid recipient: {recipient!r}"
        raise ValidationError(msg)
    recipient = recipient.strip()

    prefix, sep, rest = recipient.partition(":")
    if sep and prefix.lower() in KNOWN_CHANNELS:
        if not rest.strip():
            msg = f"Recipient {recipient!r} has no address"
            raise ValidationError(msg)
        channel, address = prefix.lower(), rest.strip()
        if channel == "email" and "@" not in address:
            msg = f"Invalid e-mail address: {address!r}"
            raise ValidationError(msg)
        return channel, address

    if "@" in recipient and " " not in recipient:
        return "email", recipient

    msg = f"Recipient {recipient!r} is neither an e-mail address nor channel:address"
    raise ValidationError(msg)


def validate_recipients(recipients: list[str]) -> list[str]:
    """Reject empty or malformed recipient lists. Returns the stripped list."""
    if isinstance(recipients, str) or not recipients:
        msg = "At least one recipient is required"
        raise ValidationError(msg)
    for recipient in recipients:
        parse_recipient(recipient)
    return [recipient.strip() for recipient in recipients]


class NotificationRouter:
    """Routes outbound messages to the channel named by each recipient."""

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a notification channel. Raises ValueError on duplicate name."""
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel

    def get_channel(self, name: str) -> NotificationChannel | None:
        """Look up a channel by name."""
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        """Return names of all registered channels."""
        return list(self._channels.keys())

    async def send(self, recipient: str, message: str, *, subject: str | None = None) -> None:
        """Deliver to one recipient. Raises NotificationError if it cannot be delivered."""
        try:
            channel_name, address = parse_recipient(recipient)
        except ValidationError as exc:
            raise NotificationError(str(exc)) from exc

        channel = self._channels.get(channel_name)
        if channel is None:
            msg = f"No '{channel_name}' channel configured for recipient {recipient!r}"
            raise NotificationError(msg)

        if not await channel.send(address, message, subject=subject):
            msg = f"Channel '{channel_name}' failed to deliver to {address!r}"
            raise NotificationError(msg)
