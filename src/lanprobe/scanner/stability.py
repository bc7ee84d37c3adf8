# LanProbe Scanner - Link Stability
"""Repeated timed handshakes against one open port to estimate latency and jitter."""

import asyncio
import logging
import math

from ..models import Device, StabilitySample
from .probe import ProbeFunc, probe_port

logger = logging.getLogger("lanprobe.scanner.stability")

NO_PORT_ERROR = "No open ports available to run a stability test."


class StabilityAssessor:
    """
    Measures success rate, mean latency and jitter for a host:port.

    Jitter is the population standard deviation of latency over the
    probes that completed; failed probes only count against success.
    """

    def __init__(self, probe: ProbeFunc = probe_port, max_concurrency: int | None = None):
        self._probe = probe
        self.max_concurrency = max_concurrency

    async def assess(
        self,
        host: str,
        port: int | None,
        ping_count: int = 20,
        timeout_ms: int = 500,
    ) -> StabilitySample:
        """
        Run ping_count timed probes against host:port.

        Args:
            host: Target address
            port: A port already known to be open, or None
            ping_count: Number of probes
            timeout_ms: Per-probe timeout

        Returns:
            StabilitySample; carries an error and zero statistics when
            there is no port to test
        """
        if port is None:
            return StabilitySample(error=NO_PORT_ERROR)

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def ping():
            if semaphore is None:
                return await self._probe(host, port, timeout_ms)
            async with semaphore:
                return await self._probe(host, port, timeout_ms)

        results = await asyncio.gather(*[ping() for _ in range(ping_count)])
        latencies = [r.elapsed_ms for r in results if r.open]

        if not latencies:
            logger.info(f"Stability check {host}:{port}: no successful pings out of {ping_count}")
            return StabilitySample(success_count=0, total_pings=ping_count)

        avg = sum(latencies) / len(latencies)
        variance = sum((l - avg) ** 2 for l in latencies) / len(latencies)

        sample = StabilitySample(
            success_count=len(latencies),
            total_pings=ping_count,
            avg_latency_ms=avg,
            jitter_ms=math.sqrt(variance),
        )
        logger.info(
            f"Stability check {host}:{port}: {sample.success_count}/{ping_count} ok, "
            f"avg={sample.avg_latency_ms:.1f}ms jitter={sample.jitter_ms:.1f}ms"
        )
        return sample

    async def assess_device(
        self,
        device: Device,
        ping_count: int = 20,
        timeout_ms: int = 500,
    ) -> StabilitySample:
        """Assess a discovered device using its lowest open port."""
        port = device.open_ports[0] if device.open_ports else None
        return await self.assess(device.ip, port, ping_count=ping_count, timeout_ms=timeout_ms)
