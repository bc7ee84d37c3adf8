"""Shared fakes for scanner tests."""

import asyncio

import pytest

from lanprobe.models import ClassificationResult, ProbeResult


class FakeProbe:
    """Probe stand-in answering from a set of open (host, port) pairs."""

    def __init__(self, open_pairs=None, is_open=None, delay: float = 0.0, elapsed_ms: float = 1.0):
        self.open_pairs = set(open_pairs or [])
        self.is_open = is_open
        self.delay = delay
        self.elapsed_ms = elapsed_ms
        self.calls = []

    async def __call__(self, host: str, port: int, timeout_ms: int) -> ProbeResult:
        self.calls.append((host, port, timeout_ms))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.is_open is not None:
            opened = self.is_open(host, port)
        else:
            opened = (host, port) in self.open_pairs
        return ProbeResult(port=port, open=opened, elapsed_ms=self.elapsed_ms)

    def calls_for(self, host: str) -> list[int]:
        return [port for h, port, _ in self.calls if h == host]


class FakeClassifier:
    """Classifier stand-in returning a fixed category per IP."""

    def __init__(self, categories=None, default: str = "Workstation", gate: asyncio.Event | None = None):
        self.categories = dict(categories or {})
        self.default = default
        self.gate = gate
        self.calls = []

    async def classify(self, ip: str, open_ports: list[int]) -> ClassificationResult:
        self.calls.append((ip, list(open_ports)))
        if self.gate is not None:
            await self.gate.wait()
        return ClassificationResult(
            category=self.categories.get(ip, self.default),
            analysis=f"Device at {ip}",
            services=[{"port": p, "serviceName": f"svc-{p}", "description": ""} for p in open_ports],
        )


class FailingClassifier:
    """Classifier stand-in that always errors."""

    def __init__(self):
        self.calls = 0

    async def classify(self, ip: str, open_ports: list[int]) -> ClassificationResult:
        self.calls += 1
        raise RuntimeError("model unavailable")


@pytest.fixture
def closed_probe():
    return FakeProbe()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()
