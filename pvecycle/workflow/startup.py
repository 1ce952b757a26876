"""
Coordinated cluster startup after power returns.

Nothing is woken while a shutdown still holds the lock or while the UPS is
below its reserve threshold. Once the API is back, the Ceph healing flags
are cleared before any guest is started, so healing suppression never
outlives the outage even if restoring guests goes wrong.
"""

import logging
from enum import Enum
from functools import partial
from typing import List, Tuple

from pvecycle.cluster.models import managed_nodes
from pvecycle.errors import GatewayUnavailable, SnapshotError, WaitTimeout

from .base import Sequencer

logger = logging.getLogger(__name__)


class StartupState(Enum):
    START = "start"
    AWAIT_SHUTDOWN_LOCK_CLEAR = "await_shutdown_lock_clear"
    NETWORK_VERIFIED = "network_verified"
    POWER_RESERVE_VERIFIED = "power_reserve_verified"
    NODES_WOKEN = "nodes_woken"
    BOOT_DELAY = "boot_delay"
    API_VERIFIED = "api_verified"
    HEALING_RESUMED = "healing_resumed"
    CLUSTER_HEALTH_OK = "cluster_health_ok"
    GUESTS_RESTORED = "guests_restored"
    AUTO_START_APPLIED = "auto_start_applied"
    COMPLETE = "complete"


class StartupSequencer(Sequencer):
    action = "startup"

    def __init__(self, context):
        super().__init__(context)
        self.lock = context.lock
        self.snapshots = context.snapshots

    async def _run(self) -> None:
        self._enter(StartupState.START)
        await self.notifier.started()
        await self.notifier.broadcast("=== STARTING PROXMOX CLUSTER STARTUP ===")

        await self.await_shutdown_lock_clear()
        self._enter(StartupState.AWAIT_SHUTDOWN_LOCK_CLEAR)

        await self.checker.await_network_reachable(per_target_timeout=self.settings.NETWORK_TIMEOUT)
        self._enter(StartupState.NETWORK_VERIFIED)

        logger.info("Checking UPS battery level")
        await self.checker.await_power_reserve_sufficient(self.settings.MIN_BATTERY)
        self._enter(StartupState.POWER_RESERVE_VERIFIED)

        targets = await self.wake_nodes()
        self._enter(StartupState.NODES_WOKEN)

        await self.await_boot(targets)
        self._enter(StartupState.BOOT_DELAY)

        logger.info("Waiting for Proxmox API to come back")
        await self.checker.await_cluster_api_reachable(bounded=False)
        self._enter(StartupState.API_VERIFIED)

        logger.info("Re-enabling Ceph autorecovery")
        self._record_healing(await self.gateway.set_healing_flags(False))
        self._enter(StartupState.HEALING_RESUMED)

        await self.await_cluster_health()
        self._enter(StartupState.CLUSTER_HEALTH_OK)

        await self.restore_guests()
        self._enter(StartupState.GUESTS_RESTORED)

        await self.apply_autostart()
        self._enter(StartupState.AUTO_START_APPLIED)

        await self.notifier.broadcast("=== PROXMOX CLUSTER STARTUP COMPLETE ===")

    async def await_shutdown_lock_clear(self) -> None:
        """Wait out a running shutdown, then give its tail time to settle."""
        if not self.lock.is_held():
            return
        logger.info("Shutdown in progress; waiting for it to finish")

        async def released() -> bool:
            return not self.lock.is_held()

        await self.waiter.pause(self.settings.LOCK_POLL_INTERVAL)
        await self.waiter.until(
            released,
            interval=self.settings.LOCK_POLL_INTERVAL,
            timeout=None,
            description="shutdown to finish",
        )
        await self.waiter.pause(self.settings.LOCK_SETTLE_DELAY, "after shutdown finished")

    async def wake_nodes(self) -> List[Tuple[str, str]]:
        """Send a magic packet to every configured, non-excluded node."""
        targets = []
        for node, mac in self.settings.WOL_NODES.items():
            if self.settings.is_excluded(node):
                self._warn(f"Not waking {node}: node is excluded")
                continue
            targets.append((node, mac))

        if not targets:
            logger.warning("No Wake-on-LAN nodes configured")
            return targets

        logger.info("Sending WOL packets")
        for node, mac in targets:
            logger.info("WOL -> %s (%s)", node, mac)
            result = await self.context.waker.wake(node, mac)
            if not result.ok:
                self._warn(f"Wake-on-LAN to {node} ({mac}) failed: {result.error}")
            await self.waiter.pause(self.settings.WOL_DELAY)
        return targets

    async def await_boot(self, targets: List[Tuple[str, str]]) -> None:
        await self.waiter.pause(self.settings.BOOT_DELAY, "for boot")
        if not self.settings.WAIT_FOR_NODE_BOOT:
            return

        for node, _ in targets:
            address = self.settings.node_address(node)
            try:
                await self.waiter.until(
                    partial(self.context.probe.is_reachable, address),
                    interval=self.settings.PROBE_INTERVAL,
                    timeout=self.settings.NODE_BOOT_TIMEOUT,
                    description=f"{node} to boot",
                )
            except WaitTimeout as e:
                self._warn(f"{node} not answering ping after {e.elapsed:.0f}s")
            else:
                logger.info("%s is up", node)

    async def await_cluster_health(self) -> None:
        """Bounded wait for HEALTH_OK; never aborts the startup."""

        async def healthy() -> bool:
            try:
                return await self.gateway.cluster_health_ok()
            except GatewayUnavailable as e:
                logger.warning("Cannot query Ceph health: %s", e)
                return False

        try:
            await self.waiter.until(
                healthy,
                interval=self.settings.HEALTH_INTERVAL,
                timeout=None,
                max_attempts=self.settings.HEALTH_ATTEMPTS,
                description="Ceph HEALTH_OK",
            )
        except WaitTimeout as e:
            self._warn(f"Ceph not HEALTH_OK after {e.attempts} checks; continuing with guest restore")
            return
        logger.info("Ceph HEALTH_OK")

    async def restore_guests(self) -> None:
        """Start every guest recorded by the last shutdown, then drop the record."""
        try:
            snapshot = self.snapshots.load()
        except SnapshotError as e:
            self._warn(f"{e}; skipping guest restore")
            return
        if snapshot is None:
            logger.info("No previous guest list found; skipping restore")
            return

        logger.info("Restoring %d guests from %s", snapshot.guest_count(), self.snapshots.path)
        failures = 0
        for node in snapshot.nodes:
            if self.settings.is_excluded(node):
                self._warn(f"Not restoring guests on {node}: node is excluded")
                continue
            for guest in snapshot.guests(node):
                logger.info("-> Starting %s", guest)
                try:
                    await self.gateway.start_guest(guest)
                except GatewayUnavailable as e:
                    failures += 1
                    self._warn(f"Start request for {guest} failed: {e}")
                await self.waiter.pause(self.settings.GUEST_SETTLE_DELAY)

        if failures:
            self._warn(
                f"{failures} guest start request(s) failed; keeping {self.snapshots.path} for a retry"
            )
            return
        self.snapshots.delete()
        logger.info("Guest restore complete; removed %s", self.snapshots.path)

    async def apply_autostart(self) -> None:
        """Start boot-enabled guests the snapshot did not cover."""
        try:
            nodes = managed_nodes(
                await self.gateway.list_nodes(), self.settings.EXCLUDED_NODES, self.settings.LAST_NODE
            )
        except GatewayUnavailable as e:
            self._warn(f"Cannot list nodes for autostart: {e}")
            return

        for node in nodes:
            logger.info("Starting all boot-enabled guests on %s", node.name)
            try:
                await self.gateway.start_all(node.name)
            except GatewayUnavailable as e:
                self._warn(f"startall on {node.name} failed: {e}")
            await self.waiter.pause(self.settings.AUTOSTART_DELAY)
