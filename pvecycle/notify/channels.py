"""
Notification delivery channels.

Each channel returns a ``DeliveryResult``; delivery failures are reported
to the caller rather than raised, because losing an email must never stop
a power workflow.
"""
import logging
import subprocess
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

import aiosmtplib
import anyio

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one notification delivery."""

    channel: str
    subject: str
    ok: bool
    error: Optional[str] = None


class Channel(Protocol):
    name: str

    async def send(self, subject: str, body: str) -> DeliveryResult:
        ...


class WallChannel:
    """Broadcasts to every logged-in terminal with wall(1)."""

    name = "wall"

    def __init__(self, binary: str = "wall", timeout_s: float = 10.0):
        self.binary = binary
        self.timeout_s = timeout_s

    def _run(self, body: str) -> DeliveryResult:
        try:
            proc = subprocess.run(
                [self.binary],
                input=body,
                text=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return DeliveryResult(self.name, "", ok=False, error=str(e))
        if proc.returncode != 0:
            return DeliveryResult(self.name, "", ok=False, error=proc.stderr.strip() or f"exit {proc.returncode}")
        return DeliveryResult(self.name, "", ok=True)

    async def send(self, subject: str, body: str) -> DeliveryResult:
        result = await anyio.to_thread.run_sync(self._run, body)
        result.subject = subject
        return result


class MailChannel:
    """Sends plain-text email through an SMTP relay."""

    name = "mail"

    def __init__(
        self,
        recipient: str,
        sender: str,
        host: str = "localhost",
        port: int = 25,
        timeout_s: float = 30.0,
    ):
        self.recipient = recipient
        self.sender = sender
        self.host = host
        self.port = port
        self.timeout_s = timeout_s

    def build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = self.recipient
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, subject: str, body: str) -> DeliveryResult:
        message = self.build_message(subject, body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                timeout=self.timeout_s,
                start_tls=False,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Mail '%s' to %s failed: %s", subject, self.recipient, e)
            return DeliveryResult(self.name, subject, ok=False, error=str(e))
        logger.debug("Mail '%s' sent to %s", subject, self.recipient)
        return DeliveryResult(self.name, subject, ok=True)
