"""Item value types shared by the chat and vector stores."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Hashable, Optional, Protocol, Tuple, runtime_checkable

DELETED_KEY = "_deleted"


@runtime_checkable
class Item(Protocol):
    """Anything the write-behind store can hold: an id plus a metadata bag."""
    @property
    def id(self) -> Hashable: ...
    @property
    def metadata(self) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class ChatMessage:
    id: int
    session_id: str
    content: Optional[str]
    role: Optional[str]
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def tombstone(cls, item_id: int, previous: Optional["ChatMessage"] = None) -> "ChatMessage":
        sid = previous.session_id if previous is not None else ""
        return cls(item_id, sid, None, None, metadata={DELETED_KEY: True})


@dataclass(frozen=True)
class VectorDocument:
    id: str
    content: Optional[str]
    embedding: Optional[Tuple[float, ...]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        # accept any sequence, store an immutable tuple
        if self.embedding is not None and not isinstance(self.embedding, tuple):
            object.__setattr__(self, "embedding", tuple(float(x) for x in self.embedding))

    @property
    def dimension(self) -> int:
        return len(self.embedding) if self.embedding is not None else 0

    @classmethod
    def tombstone(cls, item_id: str, previous: Optional["VectorDocument"] = None) -> "VectorDocument":
        return cls(item_id, None, None, {DELETED_KEY: True})


@dataclass(frozen=True)
class SimilarityResult:
    document: VectorDocument
    score: float


def is_tombstone(item: Any) -> bool:
    meta = getattr(item, "metadata", None) or {}
    return bool(meta.get(DELETED_KEY))
