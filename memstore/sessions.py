"""Per-connection message counters, alive from connect to close."""
from __future__ import annotations
import logging, threading
from typing import Dict, Optional
from .errors import SessionNotFound

log = logging.getLogger(__name__)


class _Counter:
    __slots__ = ("value", "lock")

    def __init__(self):
        self.value = 0
        self.lock = threading.Lock()


class SessionCounterRegistry:
    """
    One counter per session key. Each counter has its own lock, so increments
    on the same session are linearizable while different sessions never
    contend; the registry lock only guards creation and removal.
    """
    def __init__(self):
        self._counters: Dict[str, _Counter] = {}
        self._lock = threading.Lock()

    def on_connect(self, session_id: str) -> None:
        with self._lock:
            if session_id not in self._counters:
                self._counters[session_id] = _Counter()
                log.info("Session counter created for %s", session_id)

    def increment(self, session_id: str) -> int:
        c = self._counters.get(session_id)
        if c is None:
            raise SessionNotFound(session_id)
        with c.lock:
            c.value += 1
            return c.value

    def get(self, session_id: str) -> Optional[int]:
        c = self._counters.get(session_id)
        return c.value if c is not None else None

    def on_close(self, session_id: str) -> None:
        with self._lock:
            removed = self._counters.pop(session_id, None)
        if removed is not None:
            log.info("Session counter removed for %s after %d messages", session_id, removed.value)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._counters

    def __len__(self) -> int:
        return len(self._counters)
