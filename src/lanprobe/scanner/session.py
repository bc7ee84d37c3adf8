# LanProbe Scanner - Session State
"""
Explicit scan state handed to and returned from the scheduler.

A session holds the device collection of the current scan generation,
its progress counters, the read-only snapshot of the previous generation
and the classification tasks still in flight. Every mutation carries the
generation number it was issued for; mutations from a superseded
generation are dropped.
"""

import asyncio
import logging
from bisect import insort
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from ..models import (
    Classified,
    Device,
    Failed,
    HostScanResult,
    ScanProgress,
)
from .cidr import ip_sort_key
from .conflict import detect_conflict

logger = logging.getLogger("lanprobe.scanner.session")


@dataclass(frozen=True)
class ScanParameters:
    """Inputs of a scan run, kept so the run can be repeated."""
    addresses: tuple[str, ...]
    timeout_ms: int


class ScannerSession:
    """State of one scanning session across scan generations."""

    def __init__(self):
        self.generation = 0
        self.progress = ScanProgress()
        self.previous: Mapping[str, Device] = MappingProxyType({})
        self.hosts: list[HostScanResult] = []
        self.last_run: ScanParameters | None = None
        self.complete = False

        self._devices: list[Device] = []
        self._by_ip: dict[str, Device] = {}
        self._pending_run: ScanParameters | None = None
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def devices(self) -> list[Device]:
        """Devices of the current generation in ascending IP order."""
        return list(self._devices)

    def get_device(self, ip: str) -> Device | None:
        return self._by_ip.get(ip)

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def begin(self, addresses: list[str], timeout_ms: int) -> int:
        """
        Start a new generation.

        The current devices become the previous-scan snapshot and all
        live state is cleared. Classification still running for the old
        generation is cancelled.

        Returns:
            The new generation number
        """
        self._cancel_tasks()

        self.previous = MappingProxyType(dict(self._by_ip))
        self.generation += 1
        self.progress = ScanProgress(total=len(addresses))
        self.hosts = []
        self.complete = False
        self._devices = []
        self._by_ip = {}
        self._pending_run = ScanParameters(tuple(addresses), timeout_ms)

        logger.info(
            f"Scan generation {self.generation} started: {len(addresses)} addresses, "
            f"{len(self.previous)} devices in previous snapshot"
        )
        return self.generation

    def record_host(self, generation: int, result: HostScanResult) -> Device | None:
        """
        Account for one finished address.

        Returns:
            The new device when the host is online, otherwise None
        """
        if not self.is_current(generation) or self.complete:
            logger.debug(f"Dropping stale result for {result.ip} (generation {generation})")
            return None

        self.hosts.append(result)
        self.progress.completed += 1
        self.progress.current_label = result.ip

        if not result.online:
            return None
        if result.ip in self._by_ip:
            logger.debug(f"Duplicate result for {result.ip} in generation {generation}")
            return None

        self.progress.found_count += 1
        device = Device(
            ip=result.ip,
            status=result.status,
            open_ports=list(result.open_ports),
            generation=generation,
        )
        insort(self._devices, device, key=lambda d: ip_sort_key(d.ip))
        self._by_ip[device.ip] = device
        return device

    def apply_classification(
        self,
        generation: int,
        ip: str,
        state: Classified | Failed,
    ) -> Device | None:
        """Store a classifier outcome and reconcile against the previous scan."""
        device = self._by_ip.get(ip)
        if not self.is_current(generation) or device is None:
            logger.debug(f"Dropping stale classification for {ip} (generation {generation})")
            return None

        device.classification = state
        device.conflict = detect_conflict(self.previous.get(ip), device.category)
        return device

    def finish(self, generation: int) -> None:
        """Mark the generation complete; progress is frozen afterwards."""
        if not self.is_current(generation) or self.complete:
            return

        self.progress.completed = self.progress.total
        self.progress.current_label = "Scan complete"
        self.complete = True
        self.last_run = self._pending_run

        logger.info(
            f"Scan generation {generation} complete: "
            f"{self.progress.found_count}/{self.progress.total} hosts online"
        )

    def track(self, ip: str, task: asyncio.Task) -> None:
        """Register the classification task for a device, cancelling any it replaces."""
        replaced = self._tasks.get(ip)
        if replaced is not None and replaced is not task:
            replaced.cancel()
        self._tasks[ip] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(ip) is done:
                del self._tasks[ip]

        task.add_done_callback(_forget)

    @property
    def pending_classifications(self) -> int:
        return len(self._tasks)

    async def wait_for_classification(self) -> None:
        """Wait until every in-flight classification has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _cancel_tasks(self) -> list[asyncio.Task]:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        self._tasks.clear()
        return tasks

    async def aclose(self) -> None:
        """Cancel outstanding classification and wait for it to unwind."""
        tasks = self._cancel_tasks()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
