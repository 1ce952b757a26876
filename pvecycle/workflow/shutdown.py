"""
Graceful cluster shutdown.

Order matters: the running guests are persisted before anything is stopped,
nodes are only powered off once the cluster reports zero running guests,
and the Ceph healing flags are set while every node is still reachable.
"""

import logging
from enum import Enum
from typing import Dict, List

from pvecycle.cluster.models import Guest, Node, managed_nodes
from pvecycle.errors import (
    CycleError,
    GatewayUnavailable,
    GuestDrainTimeout,
    LockError,
    NodeOfflineTimeout,
    ShutdownInProgress,
    WaitTimeout,
)
from pvecycle.state.snapshot import WorkloadSnapshot

from .base import Sequencer

logger = logging.getLogger(__name__)


class ShutdownState(Enum):
    START = "start"
    LOCK_ACQUIRED = "lock_acquired"
    NETWORK_VERIFIED = "network_verified"
    API_VERIFIED = "api_verified"
    NODES_ENUMERATED = "nodes_enumerated"
    SNAPSHOT_CAPTURED = "snapshot_captured"
    GUESTS_STOP_REQUESTED = "guests_stop_requested"
    GUESTS_DRAINED = "guests_drained"
    HEALING_SUSPENDED = "healing_suspended"
    NODES_SHUTDOWN_REQUESTED = "nodes_shutdown_requested"
    NODES_CONFIRMED_OFFLINE = "nodes_confirmed_offline"
    LOCK_RELEASED = "lock_released"
    COMPLETE = "complete"


class ShutdownSequencer(Sequencer):
    action = "shutdown"

    def __init__(self, context):
        super().__init__(context)
        self.lock = context.lock
        self.snapshots = context.snapshots
        self._lock_acquired = False

    async def _run(self) -> None:
        self._enter(ShutdownState.START)
        if not self.lock.try_acquire():
            raise ShutdownInProgress("Another shutdown holds the shutdown lock")
        self._lock_acquired = True
        self._enter(ShutdownState.LOCK_ACQUIRED)

        await self.notifier.started()
        await self.notifier.broadcast("=== STARTING PROXMOX CLUSTER SHUTDOWN ===")

        await self.checker.await_network_reachable(per_target_timeout=self.settings.NETWORK_TIMEOUT)
        self._enter(ShutdownState.NETWORK_VERIFIED)

        await self.checker.await_cluster_api_reachable(bounded=True)
        self._enter(ShutdownState.API_VERIFIED)

        nodes = await self.enumerate_nodes()
        self._enter(ShutdownState.NODES_ENUMERATED)

        snapshot = await self.capture_snapshot(nodes)
        self._enter(ShutdownState.SNAPSHOT_CAPTURED)

        await self.request_guest_stops(snapshot)
        self._enter(ShutdownState.GUESTS_STOP_REQUESTED)

        await self.await_guest_drain()
        self._enter(ShutdownState.GUESTS_DRAINED)

        logger.info("Halting Ceph autorecovery")
        self._record_healing(await self.gateway.set_healing_flags(True))
        self._enter(ShutdownState.HEALING_SUSPENDED)

        await self.request_node_shutdowns(nodes)
        self._enter(ShutdownState.NODES_SHUTDOWN_REQUESTED)

        await self.confirm_nodes_offline(nodes)
        self._enter(ShutdownState.NODES_CONFIRMED_OFFLINE)

        self.lock.release()
        self._lock_acquired = False
        self._enter(ShutdownState.LOCK_RELEASED)

        await self.notifier.broadcast("=== PROXMOX CLUSTER SHUTDOWN COMPLETE ===")

    async def enumerate_nodes(self) -> List[Node]:
        all_nodes = await self.gateway.list_nodes()
        nodes = managed_nodes(all_nodes, self.settings.EXCLUDED_NODES, self.settings.LAST_NODE)
        logger.info("Cluster nodes: %s", " ".join(n.name for n in all_nodes))
        logger.info("To shut down:   %s", " ".join(n.name for n in nodes))
        if not nodes:
            logger.warning("No managed nodes; nothing will be powered off")
        return nodes

    async def capture_snapshot(self, nodes: List[Node]) -> WorkloadSnapshot:
        """Record running guests on every managed node and persist them."""
        logger.info("Scanning for running guests and saving to %s", self.snapshots.path)
        guests_by_node: Dict[str, List[Guest]] = {}
        for node in nodes:
            guests_by_node[node.name] = await self.gateway.list_guests(node.name)
        snapshot = WorkloadSnapshot.from_guests(guests_by_node)
        self.snapshots.save(snapshot)
        for node, vms, containers in snapshot.summary():
            logger.info("%s: %d running VMs, %d running containers", node, vms, containers)
        return snapshot

    async def request_guest_stops(self, snapshot: WorkloadSnapshot) -> None:
        """Ask every captured guest to shut down, VMs before containers per node."""
        logger.info("Shutting down guests")
        for node in snapshot.nodes:
            for guest in snapshot.guests(node):
                logger.info("-> shutdown %s", guest)
                try:
                    await self.gateway.stop_guest(guest)
                except GatewayUnavailable as e:
                    self._warn(f"Shutdown request for {guest} failed: {e}")
                await self.waiter.pause(self.settings.GUEST_SETTLE_DELAY)

    async def await_guest_drain(self) -> None:
        """Block until no guest runs anywhere in the cluster."""

        async def drained() -> bool:
            try:
                running = await self.gateway.count_running_guests()
            except GatewayUnavailable as e:
                logger.warning("Cannot count running guests: %s", e)
                return False
            if running:
                logger.info("%d guests still running", running)
            return running == 0

        try:
            await self.waiter.until(
                drained,
                interval=self.settings.GUEST_DRAIN_INTERVAL,
                timeout=self.settings.GUEST_DRAIN_TIMEOUT,
                description="guests to stop",
            )
        except WaitTimeout as e:
            raise GuestDrainTimeout(f"Guests still running after {e.elapsed:.0f}s") from e
        logger.info("All guests stopped")

    async def request_node_shutdowns(self, nodes: List[Node]) -> None:
        for node in nodes:
            logger.info("Shutting down node %s", node.name)
            await self.gateway.shutdown_node(node.name)
            await self.waiter.pause(self.settings.NODE_SHUTDOWN_DELAY)

    async def confirm_nodes_offline(self, nodes: List[Node]) -> None:
        timeout = self.settings.NODE_OFFLINE_TIMEOUT
        for node in nodes:
            address = self.settings.node_address(node.name)
            logger.info("Waiting for %s to stop responding to pings", node.name)

            async def offline(address: str = address) -> bool:
                return not await self.context.probe.is_reachable(address)

            try:
                await self.waiter.until(
                    offline,
                    interval=self.settings.PROBE_INTERVAL,
                    timeout=timeout,
                    description=f"{node.name} to go offline",
                )
            except WaitTimeout as e:
                raise NodeOfflineTimeout(node.name, timeout) from e
            logger.info("%s no longer responds to ping; offline", node.name)

    async def _on_abort(self, error: CycleError) -> None:
        if not self._lock_acquired:
            return
        if self.settings.RELEASE_LOCK_ON_ABORT:
            try:
                self.lock.release()
            except LockError as e:
                logger.error("%s", e)
                return
            self._lock_acquired = False
            logger.info("Released shutdown lock after abort")
        else:
            logger.warning(
                "Leaving the shutdown lock in place; startup will wait until an operator removes it"
            )
