"""
Tests for presence diffing and the monitor loop.

Run with: pytest tests/
"""

import asyncio
import json
import threading
from datetime import timedelta

from fakes import (
    T0,
    FakeClock,
    RecordingProvider,
    ScriptedScanAdapter,
    make_service,
    observations,
)
from lanotify.change_monitor.analyzer import PresenceAnalyzer
from lanotify.change_monitor.models import EventKind
from lanotify.change_monitor.service import Phase, build_service
from lanotify.core.config import AppConfig, NotifyConfig, ScanConfig, StorageConfig
from lanotify.core.exceptions import (
    ExitCode,
    ProcessNotFoundError,
    ScanParseError,
    ScanPermissionError,
    ScanTimeoutError,
)
from lanotify.inventory.models import Observation, PresenceStatus
from lanotify.inventory.registry import Registry
from lanotify.inventory.store import RegistryStore
from lanotify.notifications.dispatcher import NotificationDispatcher

MAC1 = "aa:bb:cc:dd:ee:01"
MAC2 = "aa:bb:cc:dd:ee:02"
MAC3 = "aa:bb:cc:dd:ee:03"


class TestPresenceAnalyzer:
    """Test scan diffing."""

    def test_new_device_joins(self):
        registry = Registry()
        events = PresenceAnalyzer().diff(observations((MAC1, "192.168.1.10")), registry, T0)

        assert len(events) == 1
        assert events[0].kind == EventKind.JOINED
        assert events[0].mac == MAC1
        device = registry.get(MAC1)
        assert device.first_seen == T0
        assert device.last_seen == T0
        assert device.status == PresenceStatus.PRESENT

    def test_no_phantom_entries(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        analyzer.diff(observations((MAC1, "192.168.1.10")), registry, T0)
        analyzer.diff([], registry, T0 + timedelta(seconds=30))
        analyzer.diff(observations((MAC2, "192.168.1.11")), registry, T0 + timedelta(seconds=60))

        assert {r.mac for r in registry} == {MAC1, MAC2}

    def test_repeated_scan_is_idempotent(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        scan = observations((MAC1, "192.168.1.10"), (MAC2, "192.168.1.11"))

        first = analyzer.diff(scan, registry, T0)
        second = analyzer.diff(scan, registry, T0 + timedelta(seconds=30))

        assert len(first) == 2
        assert second == []
        assert registry.get(MAC1).last_seen == T0 + timedelta(seconds=30)

    def test_join_leave_rejoin_scenario(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        t1, t2, t3 = T0, T0 + timedelta(seconds=30), T0 + timedelta(seconds=60)

        scan1 = analyzer.diff(observations(("AA:BB:CC:DD:EE:01", "192.168.1.10")), registry, t1)
        scan2 = analyzer.diff([], registry, t2)
        scan3 = analyzer.diff(observations(("AA:BB:CC:DD:EE:01", "192.168.1.11")), registry, t3)

        assert [(e.kind, e.mac) for e in scan1] == [(EventKind.JOINED, MAC1)]
        assert [(e.kind, e.mac) for e in scan2] == [(EventKind.LEFT, MAC1)]
        assert [(e.kind, e.mac) for e in scan3] == [(EventKind.JOINED, MAC1)]

        assert scan3[0].device.ip == "192.168.1.11"
        assert scan3[0].device.first_seen == t1
        assert registry.get(MAC1).first_seen == t1
        assert registry.get(MAC1).last_seen == t3

    def test_ip_change_is_not_a_join(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        analyzer.diff(observations((MAC1, "192.168.1.10")), registry, T0)

        events = analyzer.diff(observations((MAC1, "192.168.1.50")), registry, T0 + timedelta(seconds=30))

        assert events == []
        assert registry.get(MAC1).ip == "192.168.1.50"
        assert len(registry) == 1

    def test_absent_devices_do_not_leave_twice(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        analyzer.diff(observations((MAC1, "192.168.1.10")), registry, T0)
        left = analyzer.diff([], registry, T0 + timedelta(seconds=30))
        again = analyzer.diff([], registry, T0 + timedelta(seconds=60))

        assert len(left) == 1
        assert again == []
        assert registry.get(MAC1).last_seen == T0

    def test_event_order_is_deterministic(self):
        analyzer = PresenceAnalyzer()
        registry = Registry()
        analyzer.diff(observations((MAC2, "192.168.1.12"), (MAC3, "192.168.1.13")), registry, T0)

        later = T0 + timedelta(seconds=30)
        forward = [Observation(mac=MAC1, ip="192.168.1.11"), Observation(mac="aa:bb:cc:dd:ee:00", ip="192.168.1.9")]
        events = analyzer.diff(forward, registry, later)

        assert [(e.kind, e.mac) for e in events] == [
            (EventKind.JOINED, "aa:bb:cc:dd:ee:00"),
            (EventKind.JOINED, MAC1),
            (EventKind.LEFT, MAC2),
            (EventKind.LEFT, MAC3),
        ]

        other = Registry()
        analyzer.diff(observations((MAC3, "192.168.1.13"), (MAC2, "192.168.1.12")), other, T0)
        reversed_events = analyzer.diff(list(reversed(forward)), other, later)
        assert [(e.kind, e.mac) for e in reversed_events] == [(e.kind, e.mac) for e in events]

    def test_vendor_kept_when_scan_has_none(self):
        registry = Registry()
        analyzer = PresenceAnalyzer()
        analyzer.diff([Observation(mac=MAC1, ip="192.168.1.10", vendor="Acme")], registry, T0)
        analyzer.diff([Observation(mac=MAC1, ip="192.168.1.10")], registry, T0)

        assert registry.get(MAC1).vendor == "Acme"

    def test_event_snapshot_is_a_copy(self):
        registry = Registry()
        events = PresenceAnalyzer().diff(observations((MAC1, "192.168.1.10")), registry, T0)

        registry.get(MAC1).ip = "192.168.1.99"

        assert events[0].device.ip == "192.168.1.10"


class TestMonitorService:
    """Test the scan loop."""

    def test_cycle_updates_registry_and_persists(self, tmp_path):
        provider = RecordingProvider()
        dispatcher = NotificationDispatcher(providers=[provider], debounce_window=timedelta(0))
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path, dispatcher=dispatcher)

        assert asyncio.run(service.run_once()) is True

        assert service.phase == Phase.IDLE
        assert service.registry.get(MAC1).is_present
        assert [n.mac for n in provider.sent] == [MAC1]
        data = json.loads((tmp_path / "state.json").read_text())
        assert data["devices"][0]["mac"] == MAC1
        assert data["notifications"][MAC1]["last_kind"] == "joined"

    def test_three_timeouts_back_off(self, tmp_path):
        seed = Registry()
        PresenceAnalyzer().diff(observations((MAC1, "192.168.1.10")), seed, T0)
        RegistryStore(str(tmp_path / "state.json")).save(seed)

        adapter = ScriptedScanAdapter([ScanTimeoutError(20), ScanTimeoutError(20), ScanTimeoutError(20)])
        service = make_service(adapter, tmp_path, interval=10, max_backoff=50)
        before = service.registry.snapshot()

        delays = []
        for _ in range(3):
            assert asyncio.run(service.run_once()) is False
            delays.append(service.next_delay)

        assert delays == [20, 40, 50]
        assert delays[0] < delays[1] < delays[2]
        assert service.consecutive_failures == 3
        assert service.registry == before

    def test_backoff_resets_after_success(self, tmp_path):
        adapter = ScriptedScanAdapter([
            ScanParseError("no output"),
            ScanTimeoutError(20),
            [(MAC1, "192.168.1.10")],
        ])
        service = make_service(adapter, tmp_path, interval=10, max_backoff=300)

        async def scenario():
            await service.run_once()
            await service.run_once()
            assert service.next_delay == 40
            await service.run_once()

        asyncio.run(scenario())

        assert service.consecutive_failures == 0
        assert service.next_delay == 10
        assert service.last_error is None

    def test_missing_tool_halts_without_retry(self, tmp_path):
        adapter = ScriptedScanAdapter([ProcessNotFoundError("arp-scan not found")])
        service = make_service(adapter, tmp_path, interval=0.01)

        code = asyncio.run(service.run())

        assert code == ExitCode.TOOL_UNAVAILABLE
        assert adapter.calls == 1
        assert service.phase == Phase.STOPPED
        assert (tmp_path / "state.json").exists()

    def test_permission_denied_has_distinct_exit_code(self, tmp_path):
        adapter = ScriptedScanAdapter([ScanPermissionError("need root")])
        service = make_service(adapter, tmp_path, interval=0.01)

        assert asyncio.run(service.run()) == ExitCode.PERMISSION_DENIED
        assert adapter.calls == 1

    def test_clean_shutdown_persists(self, tmp_path):
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path, interval=0.01)
        adapter.on_exhausted = service.stop

        code = asyncio.run(service.run())

        assert code == ExitCode.OK
        assert adapter.calls == 2
        state = RegistryStore(str(tmp_path / "state.json")).load()
        # the scan that raced the shutdown request is discarded
        assert state.registry.get(MAC1).status == PresenceStatus.PRESENT

    def test_stop_before_scan_skips_cycle(self, tmp_path):
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path)
        service.stop()

        assert asyncio.run(service.run_once()) is False
        assert adapter.calls == 0

    def test_registry_reloaded_on_start(self, tmp_path):
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        first = make_service(adapter, tmp_path)
        asyncio.run(first.run_once())

        clock = FakeClock(T0 + timedelta(minutes=5))
        second = make_service(ScriptedScanAdapter([[(MAC1, "192.168.1.10")]]), tmp_path, clock=clock)
        assert second.registry.get(MAC1).first_seen == T0

        provider = RecordingProvider()
        second.dispatcher.providers = [provider]
        asyncio.run(second.run_once())
        assert provider.sent == []

    def test_quiet_first_scan(self, tmp_path):
        provider = RecordingProvider()
        dispatcher = NotificationDispatcher(providers=[provider], debounce_window=timedelta(0))
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")], [(MAC1, "192.168.1.10"), (MAC2, "192.168.1.11")]])
        service = make_service(adapter, tmp_path, dispatcher=dispatcher, quiet_first_scan=True)

        async def scenario():
            await service.run_once()
            assert provider.sent == []
            await service.run_once()

        asyncio.run(scenario())

        assert [n.mac for n in provider.sent] == [MAC2]

    def test_storage_failure_does_not_stop_loop(self, tmp_path):
        (tmp_path / "state.json").mkdir()
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")], [(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path)

        async def scenario():
            assert await service.run_once() is True
            assert await service.run_once() is True

        asyncio.run(scenario())

        assert service.persist() is False
        assert service.registry.get(MAC1).is_present

    def test_notifications_offloaded(self, tmp_path):
        provider = RecordingProvider()
        dispatcher = NotificationDispatcher(providers=[provider], debounce_window=timedelta(0))
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path, dispatcher=dispatcher, offload_notifications=True)

        async def scenario():
            await service.run_once()
            await service.wait_for_notifications(timeout=5)

        asyncio.run(scenario())

        assert [n.mac for n in provider.sent] == [MAC1]

    def test_status(self, tmp_path):
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")], ScanTimeoutError(20)])
        service = make_service(adapter, tmp_path, interval=10)

        async def scenario():
            await service.run_once()
            await service.run_once()

        asyncio.run(scenario())
        status = service.status()

        assert status["phase"] == "idle"
        assert status["consecutive_failures"] == 1
        assert status["next_delay_seconds"] == 20
        assert status["present_devices"] == 1
        assert status["last_scan_at"] == T0.isoformat()
        assert "timed out" in status["last_error"]

    def test_held_departure_released_while_scans_fail(self, tmp_path):
        provider = RecordingProvider()
        dispatcher = NotificationDispatcher(providers=[provider], debounce_window=timedelta(seconds=30))
        clock = FakeClock()
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")], [], ScanTimeoutError(20)])
        service = make_service(adapter, tmp_path, clock=clock, dispatcher=dispatcher)

        async def scenario():
            await service.run_once()
            clock.advance(30)
            await service.run_once()
            assert [n.kind for n in provider.sent] == [EventKind.JOINED]
            clock.advance(60)
            assert await service.run_once() is False

        asyncio.run(scenario())

        assert [n.kind for n in provider.sent] == [EventKind.JOINED, EventKind.LEFT]
        assert service.dispatcher.pending_departures() == []
        data = json.loads((tmp_path / "state.json").read_text())
        assert data["notifications"][MAC1]["last_kind"] == "left"

    def test_debounce_state_saved_before_delivery_finishes(self, tmp_path):
        class SlowProvider(RecordingProvider):
            def __init__(self):
                super().__init__()
                self.release = threading.Event()

            def send(self, notification):
                self.release.wait(5)
                super().send(notification)

        provider = SlowProvider()
        dispatcher = NotificationDispatcher(providers=[provider], debounce_window=timedelta(0))
        adapter = ScriptedScanAdapter([[(MAC1, "192.168.1.10")]])
        service = make_service(adapter, tmp_path, dispatcher=dispatcher, offload_notifications=True)

        async def scenario():
            await service.run_once()
            saved = json.loads((tmp_path / "state.json").read_text())
            provider.release.set()
            await service.wait_for_notifications(timeout=5)
            return saved

        saved = asyncio.run(scenario())

        assert saved["notifications"][MAC1]["last_kind"] == "joined"
        assert [n.mac for n in provider.sent] == [MAC1]


class TestMonitorLoop:
    """Run the whole loop on the real clock with scans that take time."""

    def test_single_missed_scan_is_not_announced(self, tmp_path):
        config = AppConfig(
            scan=ScanConfig(interval_seconds=0.2, timeout_seconds=0.5),
            notify=NotifyConfig(desktop_enabled=False),
            storage=StorageConfig(path=str(tmp_path / "state.json")),
        )
        adapter = ScriptedScanAdapter(
            [[(MAC1, "192.168.1.10")], [], [(MAC1, "192.168.1.10")]],
            delay=0.05,
        )
        service = build_service(config, adapter)
        provider = RecordingProvider()
        service.dispatcher.providers = [provider]
        adapter.on_exhausted = service.stop

        assert asyncio.run(service.run()) == ExitCode.OK

        assert adapter.calls == 4
        assert [(n.kind, n.mac) for n in provider.sent] == [(EventKind.JOINED, MAC1)]
        assert service.dispatcher.pending_departures() == []
        assert service.registry.get(MAC1).is_present
