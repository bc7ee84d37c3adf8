"""Tests for the scan scheduler and session state."""

import asyncio
import random

import pytest

from conftest import FailingClassifier, FakeClassifier, FakeProbe
from lanprobe.models import Classified, Failed, HostStatus, HostScanResult
from lanprobe.scanner.cidr import ip_sort_key, resolve_cidr
from lanprobe.scanner.host import DISCOVERY_PORTS, HostScanner
from lanprobe.scanner.scheduler import HostScanned, ScanComplete, ScanScheduler
from lanprobe.scanner.session import ScannerSession


class CountingHostScanner(HostScanner):
    """HostScanner that records how many hosts are in flight."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.active = 0
        self.max_active = 0

    async def scan(self, ip, timeout_ms):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(random.uniform(0, 0.005))
            return await super().scan(ip, timeout_ms)
        finally:
            self.active -= 1


class ExplodingHostScanner(HostScanner):
    """HostScanner whose scan fails for selected addresses."""

    def __init__(self, bad_ips, **kwargs):
        super().__init__(**kwargs)
        self.bad_ips = set(bad_ips)

    async def scan(self, ip, timeout_ms):
        if ip in self.bad_ips:
            raise OSError("Too many open files")
        return await super().scan(ip, timeout_ms)


async def collect(events):
    return [event async for event in events]


def addresses(count: int, prefix: str = "192.168.1") -> list[str]:
    return [f"{prefix}.{i}" for i in range(1, count + 1)]


class TestScanScheduler:
    """Test suite for ScanScheduler.run."""

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_under_concurrency(self, fake_classifier):
        """Test 50 addresses with 20 workers."""
        ips = addresses(50)
        probe = FakeProbe(is_open=lambda host, port: port == 22 and int(host.rsplit(".", 1)[1]) % 5 == 0)
        host_scanner = CountingHostScanner(probe=probe)
        scheduler = ScanScheduler(host_scanner=host_scanner, classifier=fake_classifier, concurrency=20)
        session = ScannerSession()

        events = await collect(scheduler.run(session, ips, 500))

        scanned = [e for e in events if isinstance(e, HostScanned)]
        assert len(scanned) == 50
        completed = [e.progress.completed for e in scanned]
        assert completed == list(range(1, 51))
        assert all(e.progress.found_count <= e.progress.completed for e in scanned)
        assert all(e.progress.total == 50 for e in scanned)
        assert 1 < host_scanner.max_active <= 20

        final = events[-1]
        assert isinstance(final, ScanComplete)
        assert final.progress.completed == 50
        assert final.progress.found_count == 10
        assert session.complete
        await session.wait_for_classification()

    @pytest.mark.asyncio
    async def test_devices_stay_sorted(self, fake_classifier):
        ips = addresses(30)
        random.shuffle(ips)
        probe = FakeProbe(is_open=lambda host, port: port == 80, delay=0.001)
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=fake_classifier, concurrency=7)
        session = ScannerSession()

        async for event in scheduler.run(session, ips, 500):
            keys = [ip_sort_key(d.ip) for d in session.devices]
            assert keys == sorted(keys)

        assert [d.ip for d in session.devices] == sorted(ips, key=ip_sort_key)
        await session.wait_for_classification()

    @pytest.mark.asyncio
    async def test_end_to_end_all_closed(self, closed_probe, fake_classifier):
        """Test 10.0.0.0/30 with every probe closed."""
        hosts = resolve_cidr("10.0.0.0/30").hosts
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=closed_probe), classifier=fake_classifier)
        session = ScannerSession()

        events = await collect(scheduler.run(session, hosts, 800))

        results = sorted((e.result for e in events if isinstance(e, HostScanned)), key=lambda r: ip_sort_key(r.ip))
        assert [r.ip for r in results] == ["10.0.0.1", "10.0.0.2"]
        assert all(r.status == HostStatus.OFFLINE and r.open_ports == [] for r in results)
        assert events[-1].progress.found_count == 0
        assert events[-1].devices == []
        assert len(closed_probe.calls) == 2 * len(DISCOVERY_PORTS)
        assert fake_classifier.calls == []

    @pytest.mark.asyncio
    async def test_empty_address_list(self, fake_classifier):
        session = ScannerSession()
        events = await collect(ScanScheduler(classifier=fake_classifier).run(session, [], 800))

        assert len(events) == 1
        assert isinstance(events[0], ScanComplete)
        assert session.complete

    @pytest.mark.asyncio
    async def test_host_failure_becomes_offline(self, fake_classifier):
        probe = FakeProbe(is_open=lambda host, port: port == 443)
        host_scanner = ExplodingHostScanner({"10.0.0.2"}, probe=probe)
        scheduler = ScanScheduler(host_scanner=host_scanner, classifier=fake_classifier)
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1", "10.0.0.2", "10.0.0.3"], 800)

        failed = [h for h in session.hosts if h.ip == "10.0.0.2"][0]
        assert failed.status == HostStatus.OFFLINE
        assert failed.open_ports == []
        assert [d.ip for d in session.devices] == ["10.0.0.1", "10.0.0.3"]
        assert session.progress.completed == 3
        await session.wait_for_classification()

    @pytest.mark.asyncio
    async def test_invalid_timeout_rejected_before_scanning(self, closed_probe):
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=closed_probe))
        session = ScannerSession()

        with pytest.raises(ValueError, match="Invalid timeout"):
            await scheduler.scan(session, ["10.0.0.1"], 50)

        assert closed_probe.calls == []
        assert session.generation == 0

    @pytest.mark.asyncio
    async def test_repeated_addresses_scanned_once(self):
        gate = asyncio.Event()
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        classifier = FakeClassifier(gate=gate)
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=classifier)
        session = ScannerSession()

        events = await collect(scheduler.run(session, ["10.0.0.1", "10.0.0.2", "10.0.0.1"], 800))

        assert len([e for e in events if isinstance(e, HostScanned)]) == 2
        assert [d.ip for d in session.devices] == ["10.0.0.1"]
        assert session.progress.found_count == 1
        assert session.progress.total == 2
        assert session.last_run.addresses == ("10.0.0.1", "10.0.0.2")
        assert session.pending_classifications == 1
        assert len(classifier.calls) == 1

        await session.aclose()
        assert session.pending_classifications == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["router.local", "10.0.0", "10.0.0.256", ""])
    async def test_malformed_address_rejected_before_scanning(self, closed_probe, bad):
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=closed_probe))
        session = ScannerSession()

        with pytest.raises(ValueError, match="Invalid IPv4 address"):
            await scheduler.scan(session, ["10.0.0.1", bad], 800)

        assert closed_probe.calls == []
        assert session.generation == 0

    @pytest.mark.asyncio
    async def test_superseded_run_stops_yielding(self, closed_probe):
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=closed_probe), concurrency=1)
        session = ScannerSession()

        old_run = scheduler.run(session, addresses(5, "10.0.0"), 800)
        first = await old_run.__anext__()
        assert first.progress.total == 5

        new_events = await collect(scheduler.run(session, addresses(2, "10.0.1"), 800))
        stale_events = await collect(old_run)

        assert stale_events == []
        assert isinstance(new_events[-1], ScanComplete)
        assert session.generation == 2
        assert session.progress.total == 2
        assert [h.ip for h in session.hosts] == ["10.0.1.1", "10.0.1.2"]

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            ScanScheduler(concurrency=0)


class TestClassification:
    """Test classifier fan-out from the scheduler."""

    @pytest.mark.asyncio
    async def test_devices_are_classified(self):
        probe = FakeProbe(open_pairs={("10.0.0.1", 22), ("10.0.0.1", 5432)})
        classifier = FakeClassifier({"10.0.0.1": "Server"})
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=classifier)
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1", "10.0.0.2"], 800)
        await session.wait_for_classification()

        device = session.get_device("10.0.0.1")
        assert isinstance(device.classification, Classified)
        assert device.category == "Server"
        assert not device.is_analyzing
        assert [s.port for s in device.services] == [22, 5432]
        assert classifier.calls == [("10.0.0.1", [22, 5432])]

    @pytest.mark.asyncio
    async def test_device_visible_while_analyzing(self):
        """Test slow classification does not hold up scan completion."""
        gate = asyncio.Event()
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        scheduler = ScanScheduler(
            host_scanner=HostScanner(probe=probe),
            classifier=FakeClassifier(gate=gate),
        )
        session = ScannerSession()

        events = await collect(scheduler.run(session, ["10.0.0.1"], 800))

        assert isinstance(events[-1], ScanComplete)
        assert events[0].device is not None
        assert events[0].device.is_analyzing
        assert session.devices[0].category == ""
        assert session.pending_classifications == 1

        gate.set()
        await session.wait_for_classification()

        assert session.devices[0].category == "Workstation"
        assert session.pending_classifications == 0

    @pytest.mark.asyncio
    async def test_classifier_failure_marks_device(self):
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        classifier = FailingClassifier()
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=classifier)
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 800)
        await session.wait_for_classification()

        device = session.devices[0]
        assert isinstance(device.classification, Failed)
        assert device.category == "Error"
        assert device.analysis == "AI analysis failed."
        assert device.services == []
        assert session.progress.found_count == 1

    @pytest.mark.asyncio
    async def test_classifier_timeout_marks_device(self):
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        scheduler = ScanScheduler(
            host_scanner=HostScanner(probe=probe),
            classifier=FakeClassifier(gate=asyncio.Event()),
            classifier_timeout=0.01,
        )
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 800)
        await session.wait_for_classification()

        assert session.devices[0].category == "Error"

    @pytest.mark.asyncio
    async def test_missing_classifier_marks_device(self):
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=None)
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 800)
        await session.wait_for_classification()

        assert session.devices[0].category == "Error"


class TestRerun:
    """Test repeated scans and conflict reconciliation."""

    @pytest.mark.asyncio
    async def test_rerun_flags_cross_group_change(self):
        probe = FakeProbe(is_open=lambda host, port: port == 80)
        classifier = FakeClassifier({"10.0.0.1": "Server", "10.0.0.2": "Server"})
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=classifier)
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1", "10.0.0.2"], 800)
        await session.wait_for_classification()
        first_generation = session.devices

        classifier.categories = {"10.0.0.1": "Printer", "10.0.0.2": "Workstation"}
        await collect(scheduler.rerun(session))
        await session.wait_for_classification()

        assert session.generation == 2
        assert set(session.previous) == {"10.0.0.1", "10.0.0.2"}
        assert session.get_device("10.0.0.1").conflict.previous_category == "Server"
        assert session.get_device("10.0.0.2").conflict is None
        assert all(d.category == "Server" for d in first_generation)
        assert session.previous["10.0.0.1"] is first_generation[0]

    @pytest.mark.asyncio
    async def test_rerun_reuses_parameters(self, closed_probe):
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=closed_probe))
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 300)
        await collect(scheduler.rerun(session))

        assert session.last_run.addresses == ("10.0.0.1",)
        assert {timeout for _, _, timeout in closed_probe.calls} == {300}
        assert len(closed_probe.calls) == 2 * len(DISCOVERY_PORTS)

    def test_rerun_without_previous_scan(self):
        with pytest.raises(ValueError):
            ScanScheduler().rerun(ScannerSession())

    @pytest.mark.asyncio
    async def test_stale_classification_is_dropped(self):
        """Test a classification from a superseded generation never lands."""
        gate = asyncio.Event()
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=FakeClassifier(gate=gate))
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 800)
        stale = session.generation

        await collect(scheduler.rerun(session))
        assert session.apply_classification(
            stale, "10.0.0.1", Classified(category="Printer", analysis="")
        ) is None

        gate.set()
        await session.wait_for_classification()

        assert session.get_device("10.0.0.1").category == "Workstation"
        assert session.previous["10.0.0.1"].is_analyzing
        await session.aclose()


class TestScannerSession:
    """Test session bookkeeping directly."""

    def test_record_after_finish_is_ignored(self):
        session = ScannerSession()
        generation = session.begin(["10.0.0.1"], 800)
        session.record_host(generation, HostScanResult(ip="10.0.0.1", status=HostStatus.OFFLINE))
        session.finish(generation)

        device = session.record_host(
            generation, HostScanResult(ip="10.0.0.9", status=HostStatus.ONLINE, open_ports=[22])
        )

        assert device is None
        assert session.progress.completed == 1
        assert session.progress.current_label == "Scan complete"

    def test_duplicate_online_result_ignored(self):
        session = ScannerSession()
        generation = session.begin(["10.0.0.1"], 800)
        online = HostScanResult(ip="10.0.0.1", status=HostStatus.ONLINE, open_ports=[22])

        assert session.record_host(generation, online) is not None
        assert session.record_host(generation, online) is None
        assert [d.ip for d in session.devices] == ["10.0.0.1"]
        assert session.progress.found_count == 1

    @pytest.mark.asyncio
    async def test_track_cancels_replaced_task(self):
        session = ScannerSession()
        first = asyncio.create_task(asyncio.sleep(10))
        second = asyncio.create_task(asyncio.sleep(10))

        session.track("10.0.0.1", first)
        session.track("10.0.0.1", second)
        await asyncio.sleep(0)

        assert first.cancelled()
        assert session.pending_classifications == 1
        await session.aclose()
        assert second.cancelled()

    def test_previous_snapshot_is_read_only(self):
        session = ScannerSession()
        generation = session.begin(["10.0.0.1"], 800)
        session.record_host(generation, HostScanResult(ip="10.0.0.1", status=HostStatus.ONLINE, open_ports=[22]))
        session.finish(generation)
        session.begin(["10.0.0.1"], 800)

        with pytest.raises(TypeError):
            session.previous["10.0.0.2"] = session.previous["10.0.0.1"]
        assert session.devices == []

    @pytest.mark.asyncio
    async def test_aclose_cancels_classification(self):
        gate = asyncio.Event()
        probe = FakeProbe(open_pairs={("10.0.0.1", 80)})
        scheduler = ScanScheduler(host_scanner=HostScanner(probe=probe), classifier=FakeClassifier(gate=gate))
        session = ScannerSession()

        await scheduler.scan(session, ["10.0.0.1"], 800)
        assert session.pending_classifications == 1

        await session.aclose()

        assert session.pending_classifications == 0
        assert session.devices[0].is_analyzing
