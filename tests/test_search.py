import math
import pytest
from memstore.errors import DimensionMismatch
from memstore.items import VectorDocument
from memstore.primary import PrimaryStore
from memstore.search import SimilaritySearch, cosine_similarity

def make(*vectors, policy="fail"):
    store = PrimaryStore()
    for i, v in enumerate(vectors, start=1):
        d = VectorDocument(f"doc_{i}", f"text {i}", v)
        store.put(d.id, d)
    return SimilaritySearch(store, name="t", policy=policy)

def test_cosine_basics():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    with pytest.raises(DimensionMismatch):
        cosine_similarity([1, 0], [1, 0, 0])

def test_two_of_three_scenario():
    eng = make((1, 0), (0, 1), (1, 1))
    hits = eng.search([1, 0], top_k=2, min_score=0.0)
    assert [h.document.id for h in hits] == ["doc_1", "doc_3"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[1].score == pytest.approx(1 / math.sqrt(2))

def test_self_query_scores_one_and_ranks_first_among_ties():
    v = (0.3, -1.2, 4.5)
    eng = make((1.0, 1.0, 1.0), v, v)
    hits = eng.search(list(v), top_k=3, min_score=-1.0)
    assert [h.document.id for h in hits[:2]] == ["doc_2", "doc_3"]
    assert hits[0].score == pytest.approx(1.0)

def test_impossible_threshold_is_empty():
    eng = make((1, 0), (1, 1), (2, 0))
    assert eng.search([1, 0], top_k=10, min_score=1.1) == []

def test_min_score_filters_and_top_k_truncates():
    eng = make((1, 0), (0, 1), (1, 1), (-1, 0))
    assert [h.document.id for h in eng.search([1, 0], top_k=10, min_score=0.5)] == ["doc_1", "doc_3"]
    assert len(eng.search([1, 0], top_k=1, min_score=-1.0)) == 1

def test_dimension_mismatch_fails_fast_by_default():
    eng = make((1, 0), (1, 0, 0))
    with pytest.raises(DimensionMismatch) as ei:
        eng.search([1, 0], top_k=5, min_score=0.0)
    assert ei.value.item_id == "doc_2"

def test_dimension_mismatch_skip_policy():
    eng = make((1, 0, 0), (1, 0), policy="skip")
    hits = eng.search([1, 0], top_k=5, min_score=0.0)
    assert [h.document.id for h in hits] == ["doc_2"]
    # per-call override back to fail
    with pytest.raises(DimensionMismatch):
        eng.search([1, 0], top_k=5, min_score=0.0, policy="fail")

def test_defaults_come_from_engine():
    eng = make((1, 0), (1, 1), (0, 1))
    eng.top_k, eng.min_score = 1, 0.0
    assert [h.document.id for h in eng.search([1, 0])] == ["doc_1"]

def test_tombstones_and_empty_store_are_ignored():
    store = PrimaryStore()
    t = VectorDocument.tombstone("doc_9")
    store.put(t.id, t)
    eng = SimilaritySearch(store)
    assert eng.search([1, 0], top_k=3, min_score=-1.0) == []

def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        make((1, 0)).search([1, 0], policy="coerce")
