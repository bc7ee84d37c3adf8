"""Scan configuration and input parsing."""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from .scanner.cidr import DEFAULT_MAX_HOSTS
from .scanner.host import COMMON_PORTS
from .scanner.probe import validate_timeout
from .scanner.scheduler import DEFAULT_CLASSIFIER_TIMEOUT, DEFAULT_CONCURRENCY

logger = logging.getLogger("lanprobe.config")

PORTS_ERROR = "Please provide at least one valid port number (1-65535) in the ports list."


def parse_ports(text: str) -> list[int]:
    """
    Parse a comma-separated port list.

    Entries that are not integers in [1, 65535] are skipped; duplicates
    keep their first position.

    Raises:
        ValueError: No valid port remains
    """
    ports = []
    for part in (text or "").split(","):
        part = part.strip()
        if part.isdigit() and 0 < int(part) <= 65535:
            ports.append(int(part))

    ports = list(dict.fromkeys(ports))
    if not ports:
        raise ValueError(PORTS_ERROR)
    return ports


@dataclass
class ScanConfig:
    """Scan and classifier settings."""
    ports: list[int] = field(default_factory=lambda: list(COMMON_PORTS))
    timeout_ms: int = 800
    concurrency: int = DEFAULT_CONCURRENCY
    max_hosts: int = DEFAULT_MAX_HOSTS
    classifier_timeout_s: float = DEFAULT_CLASSIFIER_TIMEOUT
    ping_count: int = 20
    ping_timeout_ms: int = 500
    provider: str = "ollama"
    model: Optional[str] = None

    def validate(self) -> None:
        """Raise ValueError on settings a scan cannot start with."""
        validate_timeout(self.timeout_ms)
        if not self.ports or any(not 0 < p <= 65535 for p in self.ports):
            raise ValueError(PORTS_ERROR)
        if self.concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        if self.max_hosts < 1:
            raise ValueError("max_hosts must be at least 1")
        if self.ping_count < 1:
            raise ValueError("ping_count must be at least 1")

    @classmethod
    def from_file(cls, path: Path | str) -> "ScanConfig":
        """
        Load settings from a YAML mapping.

        Keys match the field names; unknown keys are ignored.
        """
        path = Path(path)
        data = yaml.safe_load(path.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        for key in data.keys() - known:
            logger.warning(f"Ignoring unknown config key '{key}' in {path}")

        values = {k: v for k, v in data.items() if k in known}
        if isinstance(values.get("ports"), str):
            values["ports"] = parse_ports(values["ports"])

        config = cls(**values)
        config.validate()
        logger.debug(f"Loaded config from {path}")
        return config
