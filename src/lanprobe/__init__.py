"""
LanProbe - LAN host discovery and service characterization.

Finds live hosts on a local IPv4 subnet using TCP handshakes only,
classifies them with an LLM and flags devices whose identity changed
between scans.
"""

__version__ = "0.3.0"

from lanprobe.models import Device, ScanProgress, StabilitySample
from lanprobe.scanner import (
    HostScanner,
    ScannerSession,
    ScanScheduler,
    StabilityAssessor,
    resolve_cidr,
)

__all__ = [
    "Device",
    "ScanProgress",
    "StabilitySample",
    "HostScanner",
    "ScannerSession",
    "ScanScheduler",
    "StabilityAssessor",
    "resolve_cidr",
]
