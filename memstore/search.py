"""Brute-force cosine similarity over the primary store.

Every query scans all stored vectors (O(N*D)); there is no index.
"""
from __future__ import annotations
import logging
from typing import Hashable, List, Optional, Sequence
import numpy as np
from .errors import DimensionMismatch
from .items import SimilarityResult, VectorDocument, is_tombstone
from .observability import SEARCHES, tracer
from .primary import PrimaryStore

log = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatch(va.size, vb.size)
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class SimilaritySearch:
    """Ranks documents by cosine similarity to a query vector.

    ``policy`` decides what a dimension mismatch does: ``"fail"`` aborts the
    whole call with DimensionMismatch, ``"skip"`` leaves that candidate out.
    """
    def __init__(self, store: PrimaryStore[Hashable, VectorDocument], name: str = "vector",
                 top_k: int = 10, min_score: float = 0.0, policy: str = "fail"):
        self._store = store
        self.name = name
        self.top_k = top_k
        self.min_score = min_score
        self.policy = policy

    def search(self, query: Sequence[float], top_k: Optional[int] = None,
               min_score: Optional[float] = None, policy: Optional[str] = None) -> List[SimilarityResult]:
        top_k = self.top_k if top_k is None else top_k
        min_score = self.min_score if min_score is None else min_score
        policy = policy or self.policy
        if policy not in ("fail", "skip"):
            raise ValueError(f"Unsupported dimension policy '{policy}'. Allowed: fail, skip")
        if top_k < 1:
            return []
        q = np.asarray(query, dtype=np.float64)
        if q.ndim != 1:
            raise ValueError("Query must be a flat vector")
        SEARCHES.labels(self.name).inc()
        with tracer.start_as_current_span("search", attributes={"store": self.name, "top_k": top_k}):
            qn = float(np.linalg.norm(q))
            hits: List[SimilarityResult] = []
            for doc in self._store.scan():
                if doc.embedding is None or is_tombstone(doc):
                    continue
                if len(doc.embedding) != q.size:
                    if policy == "skip":
                        log.debug("Skipping %r: dimension %d != %d", doc.id, len(doc.embedding), q.size)
                        continue
                    raise DimensionMismatch(q.size, len(doc.embedding), doc.id)
                v = np.asarray(doc.embedding, dtype=np.float64)
                vn = float(np.linalg.norm(v))
                score = 0.0 if qn == 0.0 or vn == 0.0 else float(np.dot(q, v) / (qn * vn))
                if score >= min_score:
                    hits.append(SimilarityResult(doc, score))
            # list.sort is stable, so equal scores keep insertion order
            hits.sort(key=lambda r: r.score, reverse=True)
            return hits[:top_k]
