"""Multicast event sink: every published item reaches every live subscriber.

Each subscription owns an unbounded buffer. A subscriber that stops reading
keeps accumulating items; instead of dropping them we expose the backlog as a
gauge and log a warning once it crosses ``warn_backlog``.
"""
from __future__ import annotations
import asyncio, logging, threading
from collections import deque
from typing import AsyncIterator, Callable, Deque, Dict, Generic, Iterable, List, Optional, TypeVar, Union
from .observability import BACKLOG

log = logging.getLogger(__name__)

T = TypeVar("T")
Predicate = Callable[[T], bool]

_CLOSED = object()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class Subscription(Generic[T]):
    """Live, non-restartable async iterator over items published after subscribe().

    Replayed items (``prime``) are served ahead of anything already buffered.
    A live copy of a replayed object is dropped when it comes up.
    """
    def __init__(self, sink: "EventSink[T]", predicate: Optional[Predicate] = None,
                 warn_backlog: int = 10_000):
        self._sink = sink
        self._pred = predicate
        self._q: asyncio.Queue = asyncio.Queue()
        self._seed: Deque[T] = deque()
        self._replayed: Dict[int, T] = {}
        self._loop = _running_loop()
        self._bind_lock = threading.Lock()
        self._warn_backlog = warn_backlog
        self._warned = False
        self.closed = False

    @property
    def backlog(self) -> int:
        return self._q.qsize() + len(self._seed)

    def prime(self, seed: Iterable[T]) -> None:
        for item in seed:
            if self._pred is not None and not self._pred(item):
                continue
            self._seed.append(item)
            # keyed by id(); the dict keeps the object alive so the key stays unique
            self._replayed[id(item)] = item
            BACKLOG.labels(self._sink.name).inc()
        self._check_backlog()

    def _bind(self) -> None:
        if self._loop is None:
            with self._bind_lock:
                if self._loop is None:
                    self._loop = asyncio.get_running_loop()

    def _offer(self, item: T) -> None:
        if self.closed:
            return
        if self._pred is not None and not self._pred(item):
            return
        with self._bind_lock:
            loop = self._loop
            if loop is None:
                # no reader yet, so there is no waiter to wake
                self._put(item)
                return
        if loop is _running_loop():
            self._put(item)
            return
        try:
            loop.call_soon_threadsafe(self._put, item)
        except RuntimeError:
            # owning loop is gone; nobody can read this subscription anymore
            self.close()

    def _put(self, item) -> None:
        if item is not _CLOSED:
            if self.closed:
                return
            BACKLOG.labels(self._sink.name).inc()
        self._q.put_nowait(item)
        self._check_backlog()

    def _check_backlog(self) -> None:
        if not self._warned and self.backlog > self._warn_backlog:
            self._warned = True
            log.warning("Subscriber on '%s' is falling behind: %d undelivered items",
                        self._sink.name, self.backlog)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._sink._detach(self)
        BACKLOG.labels(self._sink.name).dec(self.backlog)
        self._seed.clear()
        self._replayed.clear()
        with self._bind_lock:
            loop = self._loop
        if loop is None or loop is _running_loop():
            self._q.put_nowait(_CLOSED)
        else:
            try:
                loop.call_soon_threadsafe(self._q.put_nowait, _CLOSED)
            except RuntimeError:
                pass

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self.closed:
            raise StopAsyncIteration
        self._bind()
        if self._seed:
            BACKLOG.labels(self._sink.name).dec()
            return self._seed.popleft()
        while True:
            item = await self._q.get()
            if item is _CLOSED or self.closed:
                raise StopAsyncIteration
            BACKLOG.labels(self._sink.name).dec()
            if self._replayed.pop(id(item), None) is item:
                continue
            return item

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class EventSink(Generic[T]):
    """Broadcasts items to independent subscribers."""
    def __init__(self, name: str = "store", warn_backlog: int = 10_000):
        self.name = name
        self._warn_backlog = warn_backlog
        self._subs: List[Subscription[T]] = []
        self._lock = threading.Lock()

    def publish(self, item: T) -> int:
        with self._lock:
            subs = list(self._subs)
        for s in subs:
            s._offer(item)
        return len(subs)

    def subscribe(self, predicate: Optional[Predicate] = None,
                  seed: Union[Iterable[T], Callable[[], Iterable[T]]] = ()) -> Subscription[T]:
        """Register a subscriber, then prime it with ``seed``.

        A callable seed is evaluated after registration, so an item published
        while the seed is being read is delivered either way.
        """
        sub = Subscription(self, predicate, self._warn_backlog)
        with self._lock:
            self._subs.append(sub)
        sub.prime(seed() if callable(seed) else seed)
        log.debug("New subscriber on '%s' (%d total)", self.name, len(self._subs))
        return sub

    def _detach(self, sub: Subscription[T]) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def close(self) -> None:
        with self._lock:
            subs = list(self._subs)
        for s in subs:
            s.close()

    def __len__(self) -> int:
        return len(self._subs)
