"""
Exception taxonomy for pvecycle.

Every fatal condition carries a short ``reason`` tag. The tag ends up in the
subject line of the failure notification, so operators can tell a network
problem from a stuck guest without opening the log.
"""
from typing import Optional


class CycleError(Exception):
    """Base exception for all workflow failures."""

    reason: str = "error"
    fatal: bool = True

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class WaitTimeout(CycleError):
    """A bounded wait ran out of time or attempts."""

    reason = "timeout"

    def __init__(self, description: str, elapsed: float, attempts: int):
        super().__init__(
            f"Timed out waiting for {description} after {elapsed:.0f}s ({attempts} attempts)"
        )
        self.description = description
        self.elapsed = elapsed
        self.attempts = attempts


class NetworkUnreachable(CycleError):
    """A network probe target never answered within its budget."""

    reason = "network"

    def __init__(self, target: str, message: Optional[str] = None):
        super().__init__(message or f"Network unreachable: {target}")
        self.target = target


class ProbeError(CycleError):
    """The network probe itself could not run (missing binary, permissions)."""

    reason = "network"


class GatewayUnavailable(CycleError):
    """The cluster API is down, refused the token, or answered garbage."""

    reason = "api"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class GuestDrainTimeout(CycleError):
    """Guests were still running when the drain budget expired."""

    reason = "guest-drain"


class NodeOfflineTimeout(CycleError):
    """A node kept answering pings after its shutdown request."""

    reason = "node-offline"

    def __init__(self, node: str, timeout: float):
        super().__init__(f"{node} still responding after {timeout:.0f}s")
        self.node = node
        self.timeout = timeout


class ShutdownInProgress(CycleError):
    """Another shutdown already holds the lock."""

    reason = "lock"


class PowerReserveUnknown(CycleError):
    """The UPS charge could not be read or was not a percentage."""

    reason = "power"
    fatal = False


class HealingFlagFailure(CycleError):
    """One or more Ceph healing flags could not be applied."""

    reason = "healing-flags"
    fatal = False

    def __init__(self, enabled: bool, failed_flags: list):
        verb = "set" if enabled else "clear"
        super().__init__(f"Failed to {verb} Ceph flags: {', '.join(failed_flags)}")
        self.enabled = enabled
        self.failed_flags = list(failed_flags)


class SnapshotError(CycleError):
    """The workload snapshot could not be read or written."""

    reason = "snapshot"


class LockError(CycleError):
    """The shutdown lock file could not be created or removed."""

    reason = "lock"
