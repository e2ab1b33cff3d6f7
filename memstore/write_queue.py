"""Unbounded multi-producer / single-consumer queue of items awaiting persistence."""
from __future__ import annotations
import threading
from collections import deque
from typing import Deque, Generic, List, TypeVar

T = TypeVar("T")


class WriteBehindQueue(Generic[T]):
    def __init__(self):
        self._q: Deque[T] = deque()
        self._drain_lock = threading.Lock()

    def enqueue(self, item: T) -> None:
        # deque.append is atomic; producers never wait on the drain lock
        self._q.append(item)

    def drain(self, max_batch: int) -> List[T]:
        """Remove and return up to ``max_batch`` items in FIFO order."""
        if max_batch < 1:
            raise ValueError("max_batch must be >= 1")
        out: List[T] = []
        with self._drain_lock:
            while len(out) < max_batch:
                try:
                    out.append(self._q.popleft())
                except IndexError:
                    break
        return out

    def __len__(self) -> int:
        return len(self._q)
