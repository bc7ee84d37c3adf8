# LanProbe Scanner - Scan Scheduler
"""
Runs the host scanner over an address list with a bounded worker pool
and streams progress as it goes.

Workers never touch session state. They push finished host results onto
an update queue, and the run loop is the only place where progress
counters and the device collection change.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Union

from ..models import (
    Classified,
    ClassificationResult,
    Device,
    Failed,
    HostScanResult,
    HostStatus,
    ScanProgress,
)
from .cidr import is_ipv4
from .host import HostScanner
from .probe import validate_timeout
from .session import ScannerSession

logger = logging.getLogger("lanprobe.scanner.scheduler")

DEFAULT_CONCURRENCY = 20
DEFAULT_CLASSIFIER_TIMEOUT = 60.0


class Classifier(Protocol):
    async def classify(self, ip: str, open_ports: list[int]) -> ClassificationResult:
        ...


@dataclass
class HostScanned:
    """One address finished scanning."""
    progress: ScanProgress
    result: HostScanResult
    device: Device | None = None


@dataclass
class ScanComplete:
    """Every address has been scanned."""
    progress: ScanProgress
    devices: list[Device]


ScanEvent = Union[HostScanned, ScanComplete]


class ScanScheduler:
    """
    Concurrency-limited scan driver.

    Online hosts are handed to the classifier in background tasks that
    the session tracks; classifier latency never holds up the scan.
    """

    def __init__(
        self,
        host_scanner: HostScanner | None = None,
        classifier: Classifier | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        classifier_timeout: float = DEFAULT_CLASSIFIER_TIMEOUT,
    ):
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")

        self.host_scanner = host_scanner or HostScanner()
        self.classifier = classifier
        self.concurrency = concurrency
        self.classifier_timeout = classifier_timeout

    async def run(
        self,
        session: ScannerSession,
        addresses: list[str],
        timeout_ms: int,
    ) -> AsyncIterator[ScanEvent]:
        """
        Scan every address and yield progress events.

        Yields one HostScanned per distinct address followed by a final
        ScanComplete with the sorted device list. Repeated addresses are
        scanned once. If another run takes over the session, this one
        stops without yielding further events.

        Raises:
            ValueError: Invalid timeout, malformed address or empty port
                list, raised before any network activity
        """
        validate_timeout(timeout_ms)
        if not self.host_scanner.discovery_ports and not self.host_scanner.ports:
            raise ValueError("Please provide at least one valid port number (1-65535) in the ports list.")

        addresses = list(dict.fromkeys(addresses))
        invalid = [ip for ip in addresses if not is_ipv4(ip)]
        if invalid:
            raise ValueError(f"Invalid IPv4 address: {invalid[0]}")

        generation = session.begin(addresses, timeout_ms)

        queue: asyncio.Queue[str] = asyncio.Queue()
        for ip in addresses:
            queue.put_nowait(ip)
        updates: asyncio.Queue[HostScanResult] = asyncio.Queue()

        workers = [
            asyncio.create_task(self._worker(queue, updates, timeout_ms))
            for _ in range(min(self.concurrency, len(addresses)))
        ]

        try:
            for _ in range(len(addresses)):
                result = await updates.get()
                if not session.is_current(generation):
                    logger.info(f"Scan generation {generation} superseded, stopping")
                    return
                device = session.record_host(generation, result)
                if device is not None:
                    self._dispatch_classification(session, generation, device)
                yield HostScanned(
                    progress=session.progress.model_copy(),
                    result=result,
                    device=device,
                )
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()

        if not session.is_current(generation):
            return
        session.finish(generation)
        yield ScanComplete(progress=session.progress.model_copy(), devices=session.devices)

    async def scan(
        self,
        session: ScannerSession,
        addresses: list[str],
        timeout_ms: int,
    ) -> ScannerSession:
        """Run a full scan without consuming events."""
        async for _ in self.run(session, addresses, timeout_ms):
            pass
        return session

    def rerun(self, session: ScannerSession) -> AsyncIterator[ScanEvent]:
        """Repeat the session's last completed scan with the same parameters."""
        if session.last_run is None:
            raise ValueError("No completed scan to repeat")
        params = session.last_run
        return self.run(session, list(params.addresses), params.timeout_ms)

    async def _worker(
        self,
        queue: asyncio.Queue,
        updates: asyncio.Queue,
        timeout_ms: int,
    ) -> None:
        while True:
            try:
                ip = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                result = await self.host_scanner.scan(ip, timeout_ms)
            except Exception as e:
                logger.warning(f"Error scanning {ip}: {e!r}")
                result = HostScanResult(ip=ip, status=HostStatus.OFFLINE, open_ports=[])

            await updates.put(result)

    def _dispatch_classification(
        self,
        session: ScannerSession,
        generation: int,
        device: Device,
    ) -> None:
        task = asyncio.create_task(
            self._classify(session, generation, device.ip, list(device.open_ports)),
            name=f"classify-{device.ip}",
        )
        session.track(device.ip, task)

    async def _classify(
        self,
        session: ScannerSession,
        generation: int,
        ip: str,
        open_ports: list[int],
    ) -> None:
        try:
            if self.classifier is None:
                raise RuntimeError("No classifier configured")
            result = await asyncio.wait_for(
                self.classifier.classify(ip, open_ports),
                timeout=self.classifier_timeout,
            )
            state = Classified(
                category=result.category,
                analysis=result.analysis,
                services=result.services,
            )
        except Exception as e:
            logger.error(f"Failed to analyze device {ip}: {e!r}")
            state = Failed(reason=str(e) or type(e).__name__)

        session.apply_classification(generation, ip, state)
