"""Persistence collaborators consumed by the flush scheduler.

A sink exposes ``write_item(item)`` and ``delete_item(id)``; both return a
truthy value on success. Either may be sync or async; sync sinks are run in
the default executor so slow I/O never stalls the event loop.
"""
from __future__ import annotations
import asyncio, dataclasses, inspect, json, logging, sqlite3, threading
from typing import Any, Callable, Dict, Hashable, List, Protocol, runtime_checkable

log = logging.getLogger(__name__)


@runtime_checkable
class PersistenceSink(Protocol):
    def write_item(self, item: Any) -> Any: ...
    def delete_item(self, item_id: Hashable) -> Any: ...


async def call_maybe_async(fn: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Call a function that may be sync or async.
    Runs sync functions in a thread executor to avoid blocking the event loop.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args, **kwargs)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))


def describe(item: Any) -> str:
    emb = getattr(item, "embedding", None)
    if emb is not None:
        return f"{type(item).__name__}(id={item.id!r}, embedding size: {len(emb)})"
    return repr(item)


class LoggingSink:
    """Development sink: logs every write/delete and always succeeds."""
    def __init__(self, level: int = logging.INFO):
        self._level = level

    def write_item(self, item: Any) -> bool:
        log.log(self._level, "PERSIST: %s", describe(item))
        return True

    def delete_item(self, item_id: Hashable) -> bool:
        log.log(self._level, "PERSIST DELETE: %r", item_id)
        return True


class InMemorySink:
    """Keeps persisted items in a dict and records every call in order."""
    def __init__(self):
        self.items: Dict[Hashable, Any] = {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def write_item(self, item: Any) -> bool:
        with self._lock:
            self.items[item.id] = item
            self.calls.append(("write", item.id))
        return True

    def delete_item(self, item_id: Hashable) -> bool:
        with self._lock:
            self.calls.append(("delete", item_id))
            self.items.pop(item_id, None)
        return True


def _to_payload(item: Any) -> str:
    data = dataclasses.asdict(item) if dataclasses.is_dataclass(item) else dict(vars(item))
    data.pop("id", None)
    return json.dumps(data, default=str, separators=(",", ":"))


class SQLiteSink:
    """
    Cold storage for flushed items: one ``items`` row per id, JSON payload.
    Writes are upserts so a re-flushed item simply replaces its row.
    """
    def __init__(self, path: str):
        self.path = path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path)
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=NORMAL;")
        return con

    def _init_db(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS items(
                    id      TEXT PRIMARY KEY,
                    kind    TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    ts      TEXT NOT NULL
                );
                """
            )
            con.commit()
        # sqlite3 "with" only scopes the transaction
        con.close()

    def write_item(self, item: Any) -> bool:
        con = self._connect()
        try:
            with con:
                con.execute(
                    "INSERT OR REPLACE INTO items(id,kind,payload,ts) VALUES(?,?,?,?);",
                    (str(item.id), type(item).__name__, _to_payload(item), str(getattr(item, "timestamp", ""))),
                )
        finally:
            con.close()
        return True

    def delete_item(self, item_id: Hashable) -> bool:
        con = self._connect()
        try:
            with con:
                con.execute("DELETE FROM items WHERE id=?;", (str(item_id),))
        finally:
            con.close()
        return True

    def load(self, item_id: Hashable) -> Dict[str, Any] | None:
        con = self._connect()
        try:
            row = con.execute("SELECT kind,payload,ts FROM items WHERE id=?;", (str(item_id),)).fetchone()
        finally:
            con.close()
        if row is None:
            return None
        return {"id": str(item_id), "kind": row[0], "ts": row[2], **json.loads(row[1])}

    def count(self) -> int:
        con = self._connect()
        try:
            return int(con.execute("SELECT COUNT(*) FROM items;").fetchone()[0])
        finally:
            con.close()
