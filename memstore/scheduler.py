"""Periodic write-behind flush: drain a bounded batch, hand it to the sink.

Persistence is best effort. A failed item is logged and counted, the rest of
the batch is still attempted, and nothing is retried or requeued.
"""
from __future__ import annotations
import asyncio, contextlib, enum, logging
from typing import Any, Generic, Optional, TypeVar
from .errors import PersistenceFailure
from .items import is_tombstone
from .observability import FLUSHED, FLUSH_FAILURES, FLUSH_LAT, FLUSH_SKIPPED, QUEUE_DEPTH, tracer
from .persistence import PersistenceSink, call_maybe_async
from .write_queue import WriteBehindQueue

log = logging.getLogger(__name__)

T = TypeVar("T")


class FlushState(str, enum.Enum):
    IDLE = "idle"
    DRAINING = "draining"
    PERSISTING = "persisting"


class FlushScheduler(Generic[T]):
    def __init__(self, queue: WriteBehindQueue[T], persistence: PersistenceSink,
                 interval_s: float, batch_size: int, name: str = "store"):
        self.name = name
        self.interval_s = interval_s
        self.batch_size = batch_size
        self.state = FlushState.IDLE
        self._queue = queue
        self._persistence = persistence
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Future] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"flush-{self.name}")
        log.info("Flush scheduler '%s' started (every %ss, batch %d)", self.name, self.interval_s, self.batch_size)

    async def stop(self, final_flush: bool = False) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        # a tick interrupted by cancel keeps running under shield; let it finish its batch
        if self._current is not None and not self._current.done():
            with contextlib.suppress(asyncio.CancelledError):
                await self._current
        if final_flush:
            while len(self._queue):
                if not await self.tick():
                    break
        log.info("Flush scheduler '%s' stopped (%d items left unflushed)", self.name, len(self._queue))

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self._current = asyncio.ensure_future(self.tick())
            await asyncio.shield(self._current)

    async def tick(self) -> int:
        """Run one flush cycle; returns how many items were drained from the queue.

        Coalesced writes and failed calls are included; 0 means the queue was
        empty or the tick was skipped.
        """
        if self.state is not FlushState.IDLE:
            FLUSH_SKIPPED.labels(self.name).inc()
            log.warning("Flush of '%s' still %s; skipping tick", self.name, self.state.value)
            return 0
        self.state = FlushState.DRAINING
        try:
            with tracer.start_as_current_span("flush", attributes={"store": self.name}), \
                    FLUSH_LAT.labels(self.name).time():
                batch = self._queue.drain(self.batch_size)
                QUEUE_DEPTH.labels(self.name).set(len(self._queue))
                if not batch:
                    return 0
                self.state = FlushState.PERSISTING
                # a write followed by a tombstone for the same id in this batch is never sent
                last_delete = {item.id: i for i, item in enumerate(batch) if is_tombstone(item)}
                sent = failed = 0
                for i, item in enumerate(batch):
                    if not is_tombstone(item) and last_delete.get(item.id, -1) > i:
                        log.debug("Coalesced write of %r into its delete", item.id)
                        continue
                    sent += 1
                    if not await self._persist(item):
                        failed += 1
        finally:
            self.state = FlushState.IDLE
        log.info("Drained %d items from '%s': %d sent to background storage, %d failed",
                 len(batch), self.name, sent, failed)
        return len(batch)

    async def _persist(self, item: Any) -> bool:
        if is_tombstone(item):
            op, fn, arg = "delete", self._persistence.delete_item, item.id
        else:
            op, fn, arg = "write", self._persistence.write_item, item
        try:
            ok = await call_maybe_async(fn, arg)
            if not ok:
                raise PersistenceFailure(op, item.id)
        except PersistenceFailure as e:
            FLUSH_FAILURES.labels(self.name, op).inc()
            log.warning("Persistence failure in '%s': %s", self.name, e)
            return False
        except Exception as e:
            FLUSH_FAILURES.labels(self.name, op).inc()
            log.warning("Persistence %s failed for %r in '%s': %s", op, item.id, self.name, e)
            return False
        FLUSHED.labels(self.name, op).inc()
        log.debug("Persisted %s %r", op, item.id)
        return True
