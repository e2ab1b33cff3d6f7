"""Generic in-memory write-behind store and its chat / vector variants.

A producer call (``put``, ``delete``, ``store_message``...) updates the
primary store, enqueues the item for background persistence and publishes it
to live subscribers, in that order, without ever awaiting I/O. Persistence is
done later by the flush scheduler's own task.
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Sequence, TypeVar
from .config import StoreParams
from .ids import IdGenerator
from .items import ChatMessage, Item, SimilarityResult, VectorDocument
from .observability import DELETED, QUEUE_DEPTH, STORED
from .persistence import PersistenceSink
from .primary import PrimaryStore, Snapshot
from .registry import sink as sink_factory
from .scheduler import FlushScheduler
from .search import SimilaritySearch
from .sink import EventSink, Predicate, Subscription
from .write_queue import WriteBehindQueue

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T", bound=Item)

TombstoneFactory = Callable[[Any, Optional[Any]], Any]


class WriteBehindStore(Generic[K, T]):
    def __init__(self, params: StoreParams, tombstone: TombstoneFactory,
                 persistence: Optional[PersistenceSink] = None):
        self.params = params
        self.name = params.name
        self.primary: PrimaryStore[K, T] = PrimaryStore()
        self.queue: WriteBehindQueue[T] = WriteBehindQueue()
        self.events: EventSink[T] = EventSink(params.name, params.subscriber_warn_backlog)
        self.persistence = persistence if persistence is not None else sink_factory(params.sink)(**params.sink_kwargs)
        self.scheduler: FlushScheduler[T] = FlushScheduler(
            self.queue, self.persistence, params.flush_interval_s, params.batch_size, params.name)
        self._tombstone = tombstone

    # -- producer side
    def _enqueue(self, item: T) -> None:
        self.queue.enqueue(item)
        QUEUE_DEPTH.labels(self.name).set(len(self.queue))

    def put(self, item: T) -> T:
        self.primary.put(item.id, item)
        self._enqueue(item)
        self.events.publish(item)
        STORED.labels(self.name).inc()
        return item

    def delete(self, item_id: K) -> bool:
        """Remove from the readable store and queue a tombstone for the sink."""
        removed = self.primary.pop(item_id)
        if removed is None:
            return False
        marker = self._tombstone(item_id, removed)
        self._enqueue(marker)
        self.events.publish(marker)
        DELETED.labels(self.name).inc()
        return True

    # -- reader side
    def get(self, item_id: K) -> Optional[T]:
        return self.primary.get(item_id)

    def scan(self) -> Snapshot[T]:
        return self.primary.scan()

    def subscribe(self, predicate: Optional[Predicate] = None, replay: bool = False) -> Subscription[T]:
        """Live feed of future items; with ``replay`` current matching items come first.

        The history is read only after the subscriber is registered, so an item
        stored concurrently is replayed, delivered live, or both (then deduped).
        """
        return self.events.subscribe(predicate, self.primary.scan if replay else ())

    def __len__(self) -> int:
        return len(self.primary)

    # -- lifecycle
    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop(final_flush=self.params.final_flush_on_stop)
        self.events.close()

    async def flush(self) -> int:
        return await self.scheduler.tick()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()


class ChatMessageStore(WriteBehindStore[int, ChatMessage]):
    """Chat messages keyed by a process-wide increasing integer id."""
    def __init__(self, params: Optional[StoreParams] = None, persistence: Optional[PersistenceSink] = None):
        super().__init__(params or StoreParams.chat(), ChatMessage.tombstone, persistence)
        self._ids: IdGenerator[int] = IdGenerator()

    def store_message(self, session_id: str, content: str, role: str,
                      metadata: Optional[Dict[str, Any]] = None) -> ChatMessage:
        msg = ChatMessage(self._ids.next(), session_id, content, role, metadata=dict(metadata or {}))
        log.debug("Stored message %d for session %s (%s)", msg.id, session_id, role)
        return self.put(msg)

    def session_messages(self, session_id: str) -> List[ChatMessage]:
        return [m for m in self.primary.scan() if m.session_id == session_id]

    def subscribe_session(self, session_id: str, replay: bool = True) -> Subscription[ChatMessage]:
        return self.subscribe(lambda m: m.session_id == session_id, replay=replay)

    def all_messages(self) -> Subscription[ChatMessage]:
        return self.subscribe()


class VectorStore(WriteBehindStore[str, VectorDocument]):
    """Documents with embeddings, searchable by cosine similarity."""
    def __init__(self, params: Optional[StoreParams] = None, persistence: Optional[PersistenceSink] = None):
        params = params or StoreParams.vector()
        super().__init__(params, VectorDocument.tombstone, persistence)
        self._ids: IdGenerator[str] = IdGenerator(prefix="doc_")
        self.engine = SimilaritySearch(self.primary, params.name, params.top_k, params.min_score,
                                       params.dimension_policy)

    def store_document(self, content: str, embedding: Sequence[float],
                       metadata: Optional[Dict[str, Any]] = None) -> VectorDocument:
        doc = VectorDocument(self._ids.next(), content, tuple(float(x) for x in embedding), dict(metadata or {}))
        log.debug("Stored document %s (dim %d)", doc.id, doc.dimension)
        return self.put(doc)

    def get_document(self, doc_id: str) -> Optional[VectorDocument]:
        return self.get(doc_id)

    def all_documents(self) -> Snapshot[VectorDocument]:
        return self.scan()

    def delete_document(self, doc_id: str) -> bool:
        return self.delete(doc_id)

    def search(self, query: Sequence[float], top_k: Optional[int] = None,
               min_score: Optional[float] = None, policy: Optional[str] = None) -> List[SimilarityResult]:
        return self.engine.search(query, top_k, min_score, policy)
