"""
ICMP reachability probe using the system 'ping' binary.

A probe that cannot run at all raises ``ProbeError`` instead of reporting
the host as down; otherwise a missing binary would make every node look
powered off.
"""
import logging
import subprocess
from typing import List, Protocol

import anyio

from pvecycle.errors import ProbeError

logger = logging.getLogger(__name__)


class NetworkProbe(Protocol):
    async def is_reachable(self, host: str) -> bool:
        ...


class PingProbe:
    """Single-packet ping with a short reply deadline."""

    def __init__(self, count: int = 1, wait_s: int = 1, binary: str = "ping"):
        self.count = count
        self.wait_s = wait_s
        self.binary = binary

    def _args(self, host: str) -> List[str]:
        return [self.binary, "-c", str(self.count), "-W", str(self.wait_s), host]

    def _run(self, host: str) -> bool:
        try:
            proc = subprocess.run(
                self._args(host),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.count * self.wait_s + 5,
            )
        except subprocess.TimeoutExpired:
            logger.debug("ping %s timed out", host)
            return False
        except OSError as e:
            raise ProbeError(f"Cannot run {self.binary}: {e}") from e
        return proc.returncode == 0

    async def is_reachable(self, host: str) -> bool:
        reachable = await anyio.to_thread.run_sync(self._run, host)
        logger.debug("ping %s -> %s", host, "up" if reachable else "down")
        return reachable
