# LanProbe Scanner - Two-Stage Host Scan
"""
Host liveness and port enumeration.

Stage 1 probes a handful of high-yield ports. Only hosts that answer on
at least one of them get the full port sweep in Stage 2, which keeps the
cost of an empty address at len(DISCOVERY_PORTS) probes. A host exposing
only ports outside the discovery set is reported offline.
"""

import asyncio
import logging

from ..models import HostScanResult, HostStatus
from .probe import ProbeFunc, probe_port

logger = logging.getLogger("lanprobe.scanner.host")

# Web, SSH, SMB, RDP, VNC, alt-HTTP
DISCOVERY_PORTS = (80, 443, 22, 445, 3389, 5900, 8080)

COMMON_PORTS = [
    21,    # FTP
    22,    # SSH
    23,    # Telnet
    25,    # SMTP
    53,    # DNS
    80,    # HTTP
    110,   # POP3
    143,   # IMAP
    443,   # HTTPS
    445,   # SMB
    993,   # IMAPS
    995,   # POP3S
    1433,  # MSSQL
    1521,  # Oracle
    3306,  # MySQL/MariaDB
    3389,  # RDP
    5432,  # PostgreSQL
    5900,  # VNC
    6379,  # Redis
    8000,  # HTTP Alt
    8080,  # HTTP Alt
    8443,  # HTTPS Alt
]


class HostScanner:
    """
    Two-stage scanner for a single host.

    The probe function is injectable so callers can substitute a fake
    transport.
    """

    def __init__(
        self,
        ports: list[int] | None = None,
        discovery_ports: tuple[int, ...] = DISCOVERY_PORTS,
        probe: ProbeFunc = probe_port,
    ):
        self.discovery_ports = tuple(dict.fromkeys(discovery_ports))
        self.ports = list(dict.fromkeys(ports if ports is not None else COMMON_PORTS))
        self._probe = probe

    @property
    def full_scan_ports(self) -> list[int]:
        """Ports probed in Stage 2."""
        discovery = set(self.discovery_ports)
        return [p for p in self.ports if p not in discovery]

    async def _open_ports(self, ip: str, ports, timeout_ms: int) -> list[int]:
        results = await asyncio.gather(*[self._probe(ip, p, timeout_ms) for p in ports])
        return [r.port for r in results if r.open]

    async def scan(self, ip: str, timeout_ms: int) -> HostScanResult:
        """Scan one host; open_ports is empty exactly when the host is offline."""
        found = await self._open_ports(ip, self.discovery_ports, timeout_ms)

        if not found:
            return HostScanResult(ip=ip, status=HostStatus.OFFLINE, open_ports=[])

        logger.debug(f"{ip} answered on {found}, running full scan")
        found += await self._open_ports(ip, self.full_scan_ports, timeout_ms)

        return HostScanResult(
            ip=ip,
            status=HostStatus.ONLINE,
            open_ports=sorted(set(found)),
        )
