"""Simple plugin registry for persistence sinks."""
from __future__ import annotations
from typing import Callable, Dict
from .persistence import PersistenceSink

_SINKS: Dict[str, Callable[..., PersistenceSink]] = {}

def register_sink(name: str, factory: Callable[..., PersistenceSink]) -> None:
    _SINKS[name] = factory

def sink(name: str) -> Callable[..., PersistenceSink]:
    if name not in _SINKS:
        raise ValueError(f"Unknown sink '{name}'. Installed: {list(_SINKS)}")
    return _SINKS[name]

def installed() -> list[str]:
    return sorted(_SINKS)
