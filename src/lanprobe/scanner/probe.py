# LanProbe Scanner - Port Probe
"""
Single host:port reachability check using a TCP handshake.

A port counts as open only when the handshake completes inside the
timeout. Refusals, transport errors and timeouts all read as closed:
a filtered port that silently drops packets cannot be told apart from a
closed one without raw sockets.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from ..models import ProbeResult

logger = logging.getLogger("lanprobe.scanner.probe")

MIN_TIMEOUT_MS = 100
MAX_TIMEOUT_MS = 5000

# Signature shared by the real probe and test fakes
ProbeFunc = Callable[[str, int, int], Awaitable[ProbeResult]]


def clamp_timeout(timeout_ms: int) -> int:
    """Clamp a probe timeout to the supported range."""
    return max(MIN_TIMEOUT_MS, min(MAX_TIMEOUT_MS, int(timeout_ms)))


def validate_timeout(timeout_ms: int) -> int:
    """Reject a scan timeout outside the supported range."""
    if (
        isinstance(timeout_ms, bool)
        or not isinstance(timeout_ms, int)
        or not MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS
    ):
        raise ValueError(
            f"Invalid timeout. Must be a number between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} ms."
        )
    return timeout_ms


async def probe_port(host: str, port: int, timeout_ms: int = 800) -> ProbeResult:
    """
    Attempt a TCP connection to host:port.

    wait_for cancels the pending connect on timeout, which closes the
    underlying socket, so a timed-out attempt never leaks a transport.

    Returns:
        ProbeResult with elapsed time measured until the handshake
        resolves; closing the connection afterwards is not counted
    """
    start = time.perf_counter()

    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        logger.debug(f"{host}:{port} timed out after {timeout_ms}ms")
    except OSError as e:
        # Refused, unreachable, or too many open sockets
        logger.debug(f"{host}:{port} connect failed: {e}")
    except Exception as e:
        logger.debug(f"{host}:{port} unexpected probe error: {e!r}")
    else:
        elapsed_ms = (time.perf_counter() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return ProbeResult(port=port, open=True, elapsed_ms=elapsed_ms)

    elapsed_ms = (time.perf_counter() - start) * 1000
    return ProbeResult(port=port, open=False, elapsed_ms=elapsed_ms)
