import threading
from memstore.ids import IdGenerator

def test_int_ids_are_monotonic():
    g = IdGenerator()
    assert [g.next() for _ in range(3)] == [1, 2, 3]

def test_prefixed_ids():
    g = IdGenerator(prefix="doc_")
    assert g() == "doc_1"
    assert g() == "doc_2"

def test_ids_unique_across_threads():
    g = IdGenerator()
    out = []
    lock = threading.Lock()
    def work():
        mine = [g.next() for _ in range(500)]
        with lock:
            out.extend(mine)
    ts = [threading.Thread(target=work) for _ in range(8)]
    for t in ts: t.start()
    for t in ts: t.join()
    assert len(out) == len(set(out)) == 4000
    assert sorted(out) == list(range(1, 4001))
