"""
Tests for the cluster startup workflow.
"""

import pytest

from conftest import FakePower, InMemoryLock, ct, vm
from pvecycle.notify.notifier import Notifier
from pvecycle.state.snapshot import SnapshotStore, WorkloadSnapshot
from pvecycle.utils.retry import Waiter
from pvecycle.workflow.base import WorkflowContext
from pvecycle.workflow.shutdown import ShutdownSequencer
from pvecycle.workflow.startup import StartupSequencer, StartupState


@pytest.fixture
def store(settings):
    return SnapshotStore(settings.SNAPSHOT_FILE)


@pytest.fixture
def saved_snapshot(store):
    snapshot = WorkloadSnapshot.from_guests(
        {
            "pve1": [vm(100, "pve1"), ct(200, "pve1"), vm(101, "pve1")],
            "pve2": [ct(201, "pve2"), vm(103, "pve2")],
        }
    )
    store.save(snapshot)
    return snapshot


class TestStartupHappyPath:
    @pytest.mark.asyncio
    async def test_walks_every_state(self, make_context, saved_snapshot, alerts, lock):
        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert report.states == [s.value for s in StartupState]
        assert report.warnings == []
        assert alerts.subjects() == [
            "Proxmox Cluster (STARTUP): STARTED",
            "Proxmox Cluster (STARTUP): COMPLETED",
        ]
        assert lock.acquired == 0

    @pytest.mark.asyncio
    async def test_cluster_calls_in_order(self, make_context, saved_snapshot, gateway, waker, store):
        await StartupSequencer(make_context("startup")).run()

        assert waker.calls == [("pve1", "aa:bb:cc:dd:ee:01"), ("pve2", "aa:bb:cc:dd:ee:02")]
        assert gateway.calls == [
            ("is_reachable",),
            ("set_flag", "noout", False),
            ("set_flag", "norebalance", False),
            ("set_flag", "norecover", False),
            ("cluster_health_ok",),
            ("start_guest", "pve1", "qemu", 100),
            ("start_guest", "pve1", "qemu", 101),
            ("start_guest", "pve1", "lxc", 200),
            ("start_guest", "pve2", "qemu", 103),
            ("start_guest", "pve2", "lxc", 201),
            ("list_nodes",),
            ("start_all", "pve1"),
            ("start_all", "pve2"),
        ]
        assert not store.exists()

    @pytest.mark.asyncio
    async def test_boot_delay_follows_wake(self, make_context, gateway, waker, clock):
        woken_at = {}
        waker.on_wake = lambda node: woken_at.setdefault(node, clock.now)
        api_checked_at = []
        gateway.reachable = lambda: api_checked_at.append(clock.now) or True

        await StartupSequencer(make_context("startup")).run()

        assert woken_at == {"pve1": 0, "pve2": 2}
        assert api_checked_at == [4 + 60]

    @pytest.mark.asyncio
    async def test_without_snapshot_nothing_is_restored(self, make_context, gateway):
        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert gateway.calls_of("start_guest") == []
        assert gateway.calls_of("start_all") == [("start_all", "pve1"), ("start_all", "pve2")]


class TestStartupGates:
    @pytest.mark.asyncio
    async def test_waits_for_running_shutdown_then_settles(self, make_context, probe, waker, clock):
        class ReleasingLock(InMemoryLock):
            def is_held(self):
                return clock.now < 15

        context = make_context("startup")
        context.lock = ReleasingLock()
        woken_at = []
        waker.on_wake = lambda node: woken_at.append(clock.now)

        report = await StartupSequencer(context).run()

        assert report.success
        assert clock.sleeps[:4] == [5, 5, 5, 60]
        assert probe.calls[0] == ("10.0.0.1", 75)
        assert min(woken_at) >= 75

    @pytest.mark.asyncio
    async def test_lock_seen_once_still_costs_one_poll(self, make_context, probe, waker, clock):
        class BrieflyHeldLock(InMemoryLock):
            def __init__(self):
                super().__init__()
                self.checks = 0

            def is_held(self):
                self.checks += 1
                return self.checks == 1

        context = make_context("startup")
        context.lock = BrieflyHeldLock()

        report = await StartupSequencer(context).run()

        assert report.success
        assert clock.sleeps[:2] == [5, 60]
        assert probe.calls[0] == ("10.0.0.1", 65)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, make_context, gateway, alerts):
        async def broken_health():
            raise KeyError("health")

        gateway.cluster_health_ok = broken_health

        report = await StartupSequencer(make_context("startup")).run()

        assert report.reason == "unexpected"
        assert report.last_state == StartupState.HEALING_RESUMED.value
        assert alerts.subjects() == [
            "Proxmox Cluster (STARTUP): STARTED",
            "Proxmox Cluster (STARTUP): FAILED (unexpected)",
        ]

    @pytest.mark.asyncio
    async def test_no_wake_below_battery_threshold(self, make_context, waker, clock):
        context = make_context("startup")
        context.power = FakePower([10, None, 49, 60])
        power_reads_at_wake = []
        waker.on_wake = lambda node: power_reads_at_wake.append(context.power.calls)

        report = await StartupSequencer(context).run()

        assert report.success
        assert power_reads_at_wake == [4, 4]
        assert clock.sleeps[:3] == [60, 60, 60]

    @pytest.mark.asyncio
    async def test_network_failure_aborts_before_wake(self, make_context, probe, waker, gateway, alerts):
        probe.answers["10.0.0.1"] = lambda: False

        report = await StartupSequencer(make_context("startup")).run()

        assert report.reason == "network"
        assert report.last_state == StartupState.AWAIT_SHUTDOWN_LOCK_CLEAR.value
        assert waker.calls == []
        assert gateway.calls == []
        assert alerts.subjects() == [
            "Proxmox Cluster (STARTUP): STARTED",
            "Proxmox Cluster (STARTUP): FAILED (network)",
        ]

    @pytest.mark.asyncio
    async def test_api_wait_is_unbounded(self, make_context, gateway, clock):
        gateway.reachable = lambda: clock.now >= 3600

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert len(gateway.calls_of("is_reachable")) > 100


class TestStartupExclusions:
    @pytest.mark.asyncio
    async def test_excluded_node_is_not_woken(self, make_context, waker, settings):
        cfg = settings.model_copy(
            update={"WOL_NODES": {**settings.WOL_NODES, "pvrserver": "aa:bb:cc:dd:ee:99"}}
        )

        report = await StartupSequencer(make_context("startup", cfg)).run()

        assert [node for node, _ in waker.calls] == ["pve1", "pve2"]
        assert "Not waking pvrserver: node is excluded" in report.warnings

    @pytest.mark.asyncio
    async def test_excluded_node_guests_are_not_started(self, make_context, gateway, store):
        store.save(
            WorkloadSnapshot.from_guests({"pve1": [vm(100, "pve1")], "pvrserver": [vm(900, "pvrserver")]})
        )

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert gateway.calls_of("start_guest") == [("start_guest", "pve1", "qemu", 100)]
        assert ("start_all", "pvrserver") not in gateway.calls
        assert "Not restoring guests on pvrserver: node is excluded" in report.warnings


class TestStartupWarnings:
    @pytest.mark.asyncio
    async def test_health_exhaustion_continues(self, make_context, saved_snapshot, gateway):
        gateway.health = [False] * 20

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert len(gateway.calls_of("cluster_health_ok")) == 20
        assert "Ceph not HEALTH_OK after 20 checks; continuing with guest restore" in report.warnings
        assert len(gateway.calls_of("start_guest")) == 5

    @pytest.mark.asyncio
    async def test_health_recovering(self, make_context, gateway, clock):
        gateway.health = [False, False, True]

        report = await StartupSequencer(make_context("startup")).run()

        assert report.warnings == []
        assert len(gateway.calls_of("cluster_health_ok")) == 3

    @pytest.mark.asyncio
    async def test_health_query_errors_count_as_unhealthy(self, make_context, gateway):
        gateway.fail_ops.add("cluster_health_ok")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert len(gateway.calls_of("cluster_health_ok")) == 20

    @pytest.mark.asyncio
    async def test_flag_clear_failure_is_a_warning(self, make_context, gateway, alerts):
        gateway.failing_flags.add("noout")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert report.warnings == ["Failed to clear Ceph flags: noout"]
        subject, body = alerts.messages[-1]
        assert subject == "Proxmox Cluster (STARTUP): COMPLETED"
        assert "Failed to clear Ceph flags: noout" in body

    @pytest.mark.asyncio
    async def test_failed_start_keeps_snapshot(self, make_context, saved_snapshot, gateway, store):
        gateway.fail_ops.add("start_guest")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert len(gateway.calls_of("start_guest")) == 5
        assert store.exists()
        assert any("keeping" in w for w in report.warnings)

    @pytest.mark.asyncio
    async def test_unreadable_snapshot_is_skipped(self, make_context, gateway, store):
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{garbage")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert gateway.calls_of("start_guest") == []
        assert store.exists()
        assert any("skipping guest restore" in w for w in report.warnings)

    @pytest.mark.asyncio
    async def test_wake_failure_is_a_warning(self, make_context, waker):
        waker.fail.add("pve2")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert report.warnings == ["Wake-on-LAN to pve2 (aa:bb:cc:dd:ee:02) failed: no route"]

    @pytest.mark.asyncio
    async def test_autostart_errors_are_warnings(self, make_context, gateway):
        gateway.fail_ops.add("start_all")

        report = await StartupSequencer(make_context("startup")).run()

        assert report.success
        assert len(report.warnings) == 2

    @pytest.mark.asyncio
    async def test_optional_boot_wait(self, make_context, probe, settings):
        probe.answers["pve2"] = lambda: False
        cfg = settings.model_copy(update={"WAIT_FOR_NODE_BOOT": True})

        report = await StartupSequencer(make_context("startup", cfg)).run()

        assert report.success
        assert report.warnings == ["pve2 not answering ping after 300s"]


@pytest.mark.asyncio
async def test_full_power_cycle(settings, gateway, probe, waker, power, alerts, clock):
    """A shutdown followed by a startup restores guests and clears every flag it set."""
    for name in ("pve1", "pve2"):
        probe.answers[name] = lambda name=name: ("shutdown_node", name) not in gateway.calls

    lock = InMemoryLock()

    def context(action):
        return WorkflowContext(
            settings=settings,
            gateway=gateway,
            probe=probe,
            waker=waker,
            power=power,
            snapshots=SnapshotStore(settings.SNAPSHOT_FILE),
            lock=lock,
            notifier=Notifier(action, alert_channels=[alerts], hostname="nut-host"),
            waiter=Waiter(clock=clock.monotonic, sleep=clock.sleep),
        )

    down = await ShutdownSequencer(context("shutdown")).run()
    up = await StartupSequencer(context("startup")).run()

    assert down.success and up.success
    flags = gateway.calls_of("set_flag")
    assert [enabled for _, _, enabled in flags] == [True] * 3 + [False] * 3
    assert [name for _, name, _ in flags[:3]] == [name for _, name, _ in flags[3:]]

    stopped = {c[1:] for c in gateway.calls_of("stop_guest")}
    started = {c[1:] for c in gateway.calls_of("start_guest")}
    assert started == stopped
    assert not SnapshotStore(settings.SNAPSHOT_FILE).exists()
    assert not lock.is_held()
