"""
Wake-on-LAN sender.

Magic packets are fire-and-forget: a successful send only means the packet
left this host. Whether the node actually booted is inferred later from
ping and API reachability.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import anyio
from wakeonlan import send_magic_packet

logger = logging.getLogger(__name__)


@dataclass
class WakeResult:
    """Outcome of sending one magic packet."""

    node: str
    mac: str
    ok: bool
    error: Optional[str] = None


class WakeSender(Protocol):
    async def wake(self, node: str, mac: str) -> WakeResult:
        ...


class WakeOnLan:
    """Broadcasts magic packets on the management network."""

    def __init__(self, broadcast: str = "255.255.255.255", port: int = 9):
        self.broadcast = broadcast
        self.port = port

    async def wake(self, node: str, mac: str) -> WakeResult:
        try:
            await anyio.to_thread.run_sync(
                lambda: send_magic_packet(mac, ip_address=self.broadcast, port=self.port)
            )
        except (ValueError, OSError) as e:
            logger.error("Wake-on-LAN to %s (%s) failed: %s", node, mac, e)
            return WakeResult(node=node, mac=mac, ok=False, error=str(e))
        return WakeResult(node=node, mac=mac, ok=True)
