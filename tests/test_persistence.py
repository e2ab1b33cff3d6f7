import logging
import pytest
from memstore import registry
from memstore.items import ChatMessage, VectorDocument
from memstore.persistence import InMemorySink, LoggingSink, SQLiteSink, call_maybe_async

def test_registry_has_builtin_sinks():
    assert {"logging", "memory", "sqlite"} <= set(registry.installed())
    assert isinstance(registry.sink("logging")(), LoggingSink)

def test_unknown_sink_lists_installed():
    with pytest.raises(ValueError) as ei:
        registry.sink("kafka")
    assert "Installed" in str(ei.value)

def test_register_custom_sink():
    registry.register_sink("custom-test", lambda **kw: InMemorySink())
    assert isinstance(registry.sink("custom-test")(), InMemorySink)

def test_logging_sink_logs(caplog):
    caplog.set_level(logging.INFO, logger="memstore.persistence")
    s = LoggingSink()
    assert s.write_item(VectorDocument("doc_1", "x", (1.0, 2.0)))
    assert s.delete_item("doc_1")
    assert "embedding size: 2" in caplog.text
    assert "PERSIST DELETE" in caplog.text

def test_sqlite_sink_upsert_and_delete(tmp_path):
    s = SQLiteSink(str(tmp_path / "cold.db"))
    d = VectorDocument("doc_1", "first", (1.0, 0.0), {"k": "v"})
    assert s.write_item(d)
    assert s.write_item(VectorDocument("doc_1", "second", (0.0, 1.0)))
    row = s.load("doc_1")
    assert row["kind"] == "VectorDocument"
    assert row["content"] == "second"
    assert row["embedding"] == [0.0, 1.0]
    assert s.count() == 1
    assert s.delete_item("doc_1")
    assert s.load("doc_1") is None
    assert s.count() == 0

def test_sqlite_sink_stores_chat_messages(tmp_path):
    s = SQLiteSink(str(tmp_path / "chat.db"))
    s.write_item(ChatMessage(7, "s1", "hi", "user"))
    row = s.load(7)
    assert row["session_id"] == "s1" and row["role"] == "user"

@pytest.mark.asyncio
async def test_call_maybe_async_handles_both():
    async def a(x): return x + 1
    def b(x): return x * 2
    assert await call_maybe_async(a, 1) == 2
    assert await call_maybe_async(b, 3) == 6
