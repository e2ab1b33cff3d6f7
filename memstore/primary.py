"""Primary store: the concurrent key -> item map every read goes through."""
from __future__ import annotations
import threading
from typing import Dict, Generic, Hashable, Iterator, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class Snapshot(Generic[T]):
    """Point-in-time view of the store; can be iterated any number of times."""
    def __init__(self, items: Tuple[T, ...]):
        self._items = items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


class PrimaryStore(Generic[K, T]):
    """In-memory key -> item map, source of truth for point lookups and scans.

    Iteration order is insertion order; overwriting an id keeps its slot.
    """
    def __init__(self):
        self._items: Dict[K, T] = {}
        self._lock = threading.Lock()

    def put(self, key: K, item: T) -> None:
        with self._lock:
            self._items[key] = item

    def get(self, key: K) -> Optional[T]:
        return self._items.get(key)

    def pop(self, key: K) -> Optional[T]:
        with self._lock:
            return self._items.pop(key, None)

    def delete(self, key: K) -> bool:
        return self.pop(key) is not None

    def scan(self) -> Snapshot[T]:
        with self._lock:
            return Snapshot(tuple(self._items.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
