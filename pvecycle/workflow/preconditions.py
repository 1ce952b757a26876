"""
Checks that must pass before a workflow takes destructive or wake actions.
"""

import logging
from functools import partial
from typing import Optional, Sequence

from pvecycle.cluster.base import ClusterGateway
from pvecycle.config import Settings
from pvecycle.errors import GatewayUnavailable, NetworkUnreachable, PowerReserveUnknown, WaitTimeout
from pvecycle.net.ping import NetworkProbe
from pvecycle.nut.client import PowerSource
from pvecycle.utils.retry import Waiter

logger = logging.getLogger(__name__)


class PreconditionChecker:
    def __init__(
        self,
        settings: Settings,
        gateway: ClusterGateway,
        probe: NetworkProbe,
        power: PowerSource,
        waiter: Waiter,
    ):
        self.settings = settings
        self.gateway = gateway
        self.probe = probe
        self.power = power
        self.waiter = waiter

    async def await_network_reachable(
        self,
        targets: Optional[Sequence[str]] = None,
        per_target_timeout: Optional[float] = None,
    ) -> None:
        """
        Wait for every probe target in turn.

        Fail fast: the first target that stays silent for its whole budget
        aborts with ``NetworkUnreachable``.
        """
        targets = self.settings.PING_TARGETS if targets is None else targets
        timeout = self.settings.NETWORK_TIMEOUT if per_target_timeout is None else per_target_timeout
        for target in targets:
            logger.info("Waiting for %s", target)
            try:
                await self.waiter.until(
                    partial(self.probe.is_reachable, target),
                    interval=self.settings.PROBE_INTERVAL,
                    timeout=timeout,
                    description=f"{target} to answer ping",
                )
            except WaitTimeout as e:
                raise NetworkUnreachable(
                    target, f"Timeout reaching {target} after {e.elapsed:.0f}s"
                ) from e
            logger.info("%s reachable", target)

    async def await_cluster_api_reachable(self, bounded: bool = True) -> None:
        """
        Wait for the cluster API.

        Bounded (shutdown): give up after API_CHECK_TIMEOUT with
        ``GatewayUnavailable``. Unbounded (startup): the API is expected to
        be down right after a power cycle, so keep polling.
        """
        timeout = self.settings.API_CHECK_TIMEOUT if bounded else None
        logger.info("Testing Proxmox API at %s", self.settings.base_url)
        try:
            await self.waiter.until(
                self.gateway.is_reachable,
                interval=self.settings.API_POLL_INTERVAL,
                timeout=timeout,
                description="Proxmox API",
            )
        except WaitTimeout as e:
            raise GatewayUnavailable(f"Proxmox API unreachable after {e.elapsed:.0f}s") from e
        logger.info("Proxmox API OK")

    async def await_power_reserve_sufficient(self, minimum_percent: Optional[float] = None) -> float:
        """
        Poll the UPS until its charge is a valid percentage at or above the
        threshold. Unreadable values count as insufficient. Never times out.

        Returns:
            The charge that satisfied the check.
        """
        minimum = self.settings.MIN_BATTERY if minimum_percent is None else minimum_percent
        reading = {}

        async def sufficient() -> bool:
            try:
                charge = await self.power.battery_charge()
            except PowerReserveUnknown as e:
                logger.warning("Battery charge unknown (%s)", e)
                return False
            reading["charge"] = charge
            if charge >= minimum:
                return True
            logger.info("Battery %.0f%% < %.0f%%", charge, minimum)
            return False

        await self.waiter.until(
            sufficient,
            interval=self.settings.BATTERY_POLL_INTERVAL,
            timeout=None,
            description=f"UPS battery to reach {minimum:.0f}%",
        )
        logger.info("UPS battery at %.0f%%", reading["charge"])
        return reading["charge"]
