from __future__ import annotations
from .registry import register_sink
from .persistence import InMemorySink, LoggingSink, SQLiteSink

# Built-in persistence sinks; external collaborators register their own
register_sink("logging", lambda **_: LoggingSink())
register_sink("memory", lambda **_: InMemorySink())
register_sink("sqlite", lambda path, **_: SQLiteSink(path))
