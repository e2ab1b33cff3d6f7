"""Monotonic identifier generators."""
from __future__ import annotations
import itertools, threading
from typing import Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)


class IdGenerator(Generic[K]):
    """Hands out unique, increasing ids; never reuses one within the process.

    With ``prefix`` set the ids are strings (``doc_1``, ``doc_2``...),
    otherwise plain ints.
    """
    def __init__(self, prefix: Optional[str] = None, start: int = 1):
        self._prefix = prefix
        self._count = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> K:
        with self._lock:
            n = next(self._count)
        return f"{self._prefix}{n}" if self._prefix is not None else n  # type: ignore[return-value]

    __call__ = next
