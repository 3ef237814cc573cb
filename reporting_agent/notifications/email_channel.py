"""E-mail implementation of the NotificationChannel protocol (SMTP)."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Reporting Agent notification"


class EmailChannel:
    """Sends notifications over SMTP.

    :mod:`smtplib` is blocking, so each message is sent from a worker thread
    via :func:`asyncio.to_thread`.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        *,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "email"

    def _build_message(self, address: str, message: str, subject: str | None) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = address
        msg["Subject"] = subject or DEFAULT_SUBJECT
        msg.set_content(message)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._starttls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(msg)

    async def send(self, address: str, message: str, *, subject: str | None = None) -> bool:
        """Send a plain text e-mail to *address*."""
        msg = self._build_message(address, message, subject)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("EmailChannel.send failed for %s", address)
            return False
        logger.info("E-mail sent to %s (%s)", address, msg["Subject"])
        return True
