# LanProbe Scanner - Scanning & Measurement Engine
"""
Range resolution, two-stage host probing, scan scheduling,
link stability sampling and identity conflict detection.
"""

from .cidr import (
    DEFAULT_MAX_HOSTS,
    int_to_ip,
    is_ipv4,
    ip_sort_key,
    ip_to_int,
    resolve_cidr,
    resolve_octet_range,
)
from .probe import clamp_timeout, probe_port, validate_timeout
from .host import COMMON_PORTS, DISCOVERY_PORTS, HostScanner
from .conflict import category_group, detect_conflict
from .stability import StabilityAssessor
from .session import ScannerSession, ScanParameters
from .scheduler import HostScanned, ScanComplete, ScanEvent, ScanScheduler

__all__ = [
    # Ranges
    "DEFAULT_MAX_HOSTS",
    "resolve_cidr",
    "resolve_octet_range",
    "ip_to_int",
    "int_to_ip",
    "is_ipv4",
    "ip_sort_key",
    # Probing
    "probe_port",
    "clamp_timeout",
    "validate_timeout",
    "HostScanner",
    "COMMON_PORTS",
    "DISCOVERY_PORTS",
    # Scheduling
    "ScanScheduler",
    "ScannerSession",
    "ScanParameters",
    "HostScanned",
    "ScanComplete",
    "ScanEvent",
    # Measurement
    "StabilityAssessor",
    # Conflicts
    "category_group",
    "detect_conflict",
]
