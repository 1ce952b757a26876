import pytest
from typing import Callable, Dict, List, Optional

from pvecycle.cluster.models import Guest, GuestKind, HealingFlagResult, Node
from pvecycle.config import CEPH_HEALING_FLAGS, Settings
from pvecycle.errors import GatewayUnavailable, PowerReserveUnknown
from pvecycle.net.wol import WakeResult
from pvecycle.notify.channels import DeliveryResult
from pvecycle.notify.notifier import Notifier
from pvecycle.state.snapshot import SnapshotStore
from pvecycle.utils.retry import Waiter
from pvecycle.workflow.base import WorkflowContext


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeGateway:
    """
    In-memory cluster. Every call is appended to ``calls`` as a tuple so
    tests can assert on ordering across different operations.
    """

    def __init__(self, nodes: List[str], guests: Optional[Dict[str, List[Guest]]] = None):
        self.nodes = [Node(name=n, status="online") for n in nodes]
        self.guests = guests or {}
        self.calls: List[tuple] = []
        self.reachable: Callable[[], bool] = lambda: True
        self.running_counts: List[int] = []
        self.health: List[bool] = []
        self.fail_ops: set = set()
        self.failing_flags: set = set()

    def _check(self, op: str) -> None:
        if op in self.fail_ops:
            raise GatewayUnavailable(f"{op} failed")

    def calls_of(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    async def is_reachable(self) -> bool:
        self.calls.append(("is_reachable",))
        return self.reachable()

    async def list_nodes(self) -> List[Node]:
        self.calls.append(("list_nodes",))
        self._check("list_nodes")
        return list(self.nodes)

    async def list_guests(self, node: str) -> List[Guest]:
        self.calls.append(("list_guests", node))
        self._check("list_guests")
        return list(self.guests.get(node, []))

    async def count_running_guests(self) -> int:
        self.calls.append(("count_running_guests",))
        self._check("count_running_guests")
        if self.running_counts:
            return self.running_counts.pop(0)
        return 0

    async def start_guest(self, guest: Guest) -> str:
        self.calls.append(("start_guest", guest.node, guest.kind.value, guest.vmid))
        self._check("start_guest")
        return "UPID:start"

    async def stop_guest(self, guest: Guest) -> str:
        self.calls.append(("stop_guest", guest.node, guest.kind.value, guest.vmid))
        self._check("stop_guest")
        return "UPID:stop"

    async def start_all(self, node: str) -> str:
        self.calls.append(("start_all", node))
        self._check("start_all")
        return "UPID:startall"

    async def shutdown_node(self, node: str) -> str:
        self.calls.append(("shutdown_node", node))
        self._check("shutdown_node")
        return "UPID:shutdown"

    async def set_healing_flags(self, enabled: bool) -> HealingFlagResult:
        result = HealingFlagResult(enabled=enabled)
        for flag in CEPH_HEALING_FLAGS:
            self.calls.append(("set_flag", flag, enabled))
            ok = flag not in self.failing_flags
            result.applied[flag] = ok
            if not ok:
                result.errors[flag] = "boom"
        return result

    async def cluster_health_ok(self) -> bool:
        self.calls.append(("cluster_health_ok",))
        self._check("cluster_health_ok")
        if self.health:
            return self.health.pop(0)
        return True


class FakeProbe:
    """Ping probe answering from a per-host callable."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.answers: Dict[str, Callable[[], bool]] = {}
        self.default: Callable[[str], bool] = lambda host: True
        self.calls: List[tuple] = []

    async def is_reachable(self, host: str) -> bool:
        self.calls.append((host, self.clock.now))
        if host in self.answers:
            return self.answers[host]()
        return self.default(host)


class FakeWaker:
    def __init__(self, on_wake: Optional[Callable[[str], None]] = None):
        self.calls: List[tuple] = []
        self.fail: set = set()
        self.on_wake = on_wake

    async def wake(self, node: str, mac: str) -> WakeResult:
        self.calls.append((node, mac))
        if self.on_wake:
            self.on_wake(node)
        if node in self.fail:
            return WakeResult(node=node, mac=mac, ok=False, error="no route")
        return WakeResult(node=node, mac=mac, ok=True)


class FakePower:
    """UPS whose readings are consumed in order; None means unreadable."""

    def __init__(self, readings: Optional[List[Optional[float]]] = None):
        self.readings = list(readings or [])
        self.last = 100.0
        self.calls = 0

    async def battery_charge(self) -> float:
        self.calls += 1
        if self.readings:
            self.last = self.readings.pop(0)
        if self.last is None:
            raise PowerReserveUnknown("battery.charge unavailable")
        return self.last


class InMemoryLock:
    def __init__(self, held: bool = False):
        self.held = held
        self.acquired = 0
        self.released = 0

    def try_acquire(self) -> bool:
        if self.held:
            return False
        self.held = True
        self.acquired += 1
        return True

    def release(self) -> None:
        self.held = False
        self.released += 1

    def is_held(self) -> bool:
        return self.held


class RecordingChannel:
    name = "recording"

    def __init__(self):
        self.messages: List[tuple] = []

    async def send(self, subject: str, body: str) -> DeliveryResult:
        self.messages.append((subject, body))
        return DeliveryResult(self.name, subject, ok=True)

    def subjects(self) -> List[str]:
        return [s for s, _ in self.messages]


def vm(vmid: int, node: str, running: bool = True) -> Guest:
    return Guest(vmid=vmid, kind=GuestKind.QEMU, node=node, status="running" if running else "stopped")


def ct(vmid: int, node: str, running: bool = True) -> Guest:
    return Guest(vmid=vmid, kind=GuestKind.LXC, node=node, status="running" if running else "stopped")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        API_HOST="pve.test",
        API_TOKEN_ID="nut@pve!ups",
        API_TOKEN_SECRET="secret",
        EXCLUDED_NODES=["pvrserver"],
        PING_TARGETS=["10.0.0.1", "10.0.0.248"],
        WOL_NODES={"pve1": "aa:bb:cc:dd:ee:01", "pve2": "aa:bb:cc:dd:ee:02"},
        LOG_DIR=tmp_path / "log",
        LOCK_FILE=tmp_path / "run" / "shutdown.pid",
        SNAPSHOT_FILE=tmp_path / "run" / "running.json",
        WALL_ENABLED=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return FakeGateway(
        nodes=["pve1", "pve2", "pvrserver"],
        guests={
            "pve1": [vm(100, "pve1"), vm(101, "pve1"), vm(102, "pve1", running=False), ct(200, "pve1")],
            "pve2": [ct(201, "pve2"), vm(103, "pve2")],
            "pvrserver": [vm(900, "pvrserver")],
        },
    )


@pytest.fixture
def probe(clock):
    return FakeProbe(clock)


@pytest.fixture
def waker():
    return FakeWaker()


@pytest.fixture
def power():
    return FakePower()


@pytest.fixture
def lock():
    return InMemoryLock()


@pytest.fixture
def alerts():
    return RecordingChannel()


@pytest.fixture
def make_context(settings, gateway, probe, waker, power, lock, alerts, clock):
    """Build a WorkflowContext from the fakes, optionally with other settings."""

    def _make(action: str, settings_override: Optional[Settings] = None) -> WorkflowContext:
        cfg = settings_override or settings
        return WorkflowContext(
            settings=cfg,
            gateway=gateway,
            probe=probe,
            waker=waker,
            power=power,
            snapshots=SnapshotStore(cfg.SNAPSHOT_FILE),
            lock=lock,
            notifier=Notifier(action, alert_channels=[alerts], hostname="nut-host"),
            waiter=Waiter(clock=clock.monotonic, sleep=clock.sleep),
        )

    return _make
