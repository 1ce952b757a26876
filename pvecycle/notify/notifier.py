"""
Operator-facing notifications for a workflow run.

Three messages per run at most: one when the workflow starts, then either
one completion message (carrying the whole operational log) or one failure
message tagged with the abort reason. ``broadcast`` additionally pushes
important progress lines to logged-in operators.
"""
import logging
import socket
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from pvecycle.config import Settings
from pvecycle.errors import CycleError

from .channels import Channel, DeliveryResult, MailChannel, WallChannel

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(
        self,
        action: str,
        *,
        alert_channels: Sequence[Channel] = (),
        broadcast_channels: Sequence[Channel] = (),
        log_file: Optional[Path] = None,
        hostname: Optional[str] = None,
    ):
        self.action = action
        self.alert_channels = list(alert_channels)
        self.broadcast_channels = list(broadcast_channels)
        self.log_file = log_file
        self.hostname = hostname or socket.gethostname()
        self.deliveries: List[DeliveryResult] = []

    @classmethod
    def from_settings(cls, settings: Settings, action: str, log_file: Optional[Path] = None) -> "Notifier":
        alerts: List[Channel] = []
        if settings.MAIL_ENABLED and settings.MAIL_TO:
            alerts.append(
                MailChannel(
                    recipient=settings.MAIL_TO,
                    sender=settings.MAIL_FROM,
                    host=settings.SMTP_HOST,
                    port=settings.SMTP_PORT,
                )
            )
        broadcasts: List[Channel] = [WallChannel()] if settings.WALL_ENABLED else []
        return cls(action, alert_channels=alerts, broadcast_channels=broadcasts, log_file=log_file)

    @property
    def subject_prefix(self) -> str:
        return f"Proxmox Cluster ({self.action.upper()})"

    @property
    def failed_deliveries(self) -> List[DeliveryResult]:
        return [d for d in self.deliveries if not d.ok]

    async def broadcast(self, message: str, level: int = logging.INFO) -> None:
        """Log ``message`` and push it to every logged-in operator."""
        logger.log(level, message)
        await self._deliver(self.broadcast_channels, self.subject_prefix, message)

    async def started(self) -> None:
        body = f"{_timestamp()} - {self.action.capitalize()} initiated on {self.hostname}"
        await self._deliver(self.alert_channels, f"{self.subject_prefix}: STARTED", body)

    async def completed(self, summary: Optional[str] = None) -> None:
        body = self._read_log()
        if summary:
            body = f"{body}\n{summary}" if body else summary
        await self._deliver(self.alert_channels, f"{self.subject_prefix}: COMPLETED", body)

    async def failed(self, error: CycleError) -> None:
        body = f"{_timestamp()} - Aborted: {error}"
        log = self._read_log()
        if log:
            body = f"{body}\n\n{log}"
        await self._deliver(
            self.alert_channels, f"{self.subject_prefix}: FAILED ({error.reason})", body
        )

    def _read_log(self) -> str:
        if self.log_file is None:
            return ""
        for handler in logging.getLogger().handlers:
            handler.flush()
        try:
            return self.log_file.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot read operational log %s: %s", self.log_file, e)
            return ""

    async def _deliver(self, channels: Sequence[Channel], subject: str, body: str) -> None:
        for channel in channels:
            result = await channel.send(subject, body)
            self.deliveries.append(result)
            if not result.ok:
                logger.warning("Notification via %s failed: %s", channel.name, result.error)


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")
