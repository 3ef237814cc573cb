"""NotificationChannel protocol: interface for all notification delivery channels."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'email', 'telegram')."""
        ...

    async def send(self, address: str, message: str, *, subject: str | None = None) -> bool:
        """Deliver *message* to *address*. Returns True on success."""
        ...
