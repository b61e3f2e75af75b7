"""Backend health checks: ping each adapter before starting a debate.

Every check reports round-trip latency, so a slow backend is visible before
it stalls a turn. A shared cancel event lets the caller abandon the whole
batch at once (the CLI wires it to Ctrl-C).
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from colloquy.models import ChatMessage, GenerationOptions
from colloquy.providers.base import BackendError, ErrorKind, ModelAdapter

logger = logging.getLogger(__name__)

_PING_MESSAGES = [ChatMessage(role="user", content="Reply with the word OK only.")]
_TIMEOUT_SEC = 15.0

TIMEOUT = "timeout"


@dataclass(frozen=True)
class HealthResult:
    backend_id: str
    ok: bool
    latency_sec: float = 0.0
    error: str = ""
    error_kind: str | None = None      # ErrorKind value, or TIMEOUT

    def describe(self) -> str:
        if self.ok:
            return f"{self.backend_id} ({self.latency_sec:.1f}s)"
        first_line = self.error.splitlines()[0][:120] if self.error else "unknown error"
        return f"{self.backend_id}: {first_line}"


async def _check_one(
    backend_id: str, adapter: ModelAdapter, cancel_event: asyncio.Event | None, timeout_sec: float
) -> HealthResult:
    options = GenerationOptions(max_tokens=16, cancel_event=cancel_event)
    start = time.monotonic()
    try:
        await asyncio.wait_for(adapter.generate(_PING_MESSAGES, options), timeout=timeout_sec)
    except asyncio.TimeoutError:
        return HealthResult(backend_id, False, timeout_sec, f"No reply within {timeout_sec:.0f}s", TIMEOUT)
    except BackendError as exc:
        logger.debug("Health check for %s failed (%s): %s", backend_id, exc.kind, exc)
        return HealthResult(backend_id, False, time.monotonic() - start, str(exc), str(exc.kind))
    except Exception as exc:
        logger.debug("Health check for %s failed: %s", backend_id, exc)
        return HealthResult(backend_id, False, time.monotonic() - start, str(exc), str(ErrorKind.UPSTREAM))

    latency = time.monotonic() - start
    logger.debug("Health check for %s passed in %.2fs", backend_id, latency)
    return HealthResult(backend_id, True, latency)


async def run_health_checks(
    adapters: dict[str, ModelAdapter],
    cancel_event: asyncio.Event | None = None,
    timeout_sec: float | None = None,
) -> dict[str, HealthResult]:
    """Ping all adapters in parallel.

    Returns:
        Dict mapping backend id -> HealthResult, in the order given.
        When ``cancel_event`` fires, checks still in flight report
        error_kind "cancelled".
    """
    timeout = timeout_sec if timeout_sec is not None else _TIMEOUT_SEC
    results = await asyncio.gather(*(_check_one(b, a, cancel_event, timeout) for b, a in adapters.items()))
    return {result.backend_id: result for result in results}
