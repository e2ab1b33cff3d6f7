"""Concurrency gating for live subscription streams, with drain on SIGTERM."""
from __future__ import annotations
import asyncio, logging, signal
from contextlib import asynccontextmanager

log = logging.getLogger(__name__)


class StreamsDraining(RuntimeError):
    pass


class ConcurrencyGate:
    """Caps concurrent subscriber streams and refuses new ones once draining.

    Each open stream holds a subscriber buffer, so the cap also bounds how many
    buffers can grow at once.
    """
    def __init__(self, max_concurrent: int, drain_seconds: int):
        self._sem = asyncio.Semaphore(max_concurrent)
        self._draining = asyncio.Event()
        self._drain_seconds = drain_seconds
        self.active = 0

    @property
    def draining(self) -> bool:
        return self._draining.is_set()

    def start_drain(self) -> None:
        if not self._draining.is_set():
            log.info("Draining: refusing new streams (%d active)", self.active)
        self._draining.set()

    async def wait_drained(self) -> bool:
        """Wait up to ``drain_seconds`` for open streams to finish."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._drain_seconds
        while self.active and loop.time() < deadline:
            await asyncio.sleep(0.05)
        return self.active == 0

    def install_sigterm_handler(self) -> None:
        def _handler(*_):
            self.start_drain()
        try:
            signal.signal(signal.SIGTERM, _handler)
        except (ValueError, OSError) as e:
            # only the main thread may install handlers; some platforms refuse SIGTERM
            log.debug("SIGTERM handler not installed: %s", e)

    @asynccontextmanager
    async def slot(self):
        if self._draining.is_set():
            raise StreamsDraining("Draining")
        async with self._sem:
            self.active += 1
            try:
                yield
            finally:
                self.active -= 1
