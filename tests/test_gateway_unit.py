import json
import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from gateway.app import ChatResponse, create_app, process_message
from memstore.config import StoreParams
from memstore.persistence import InMemorySink
from memstore.sessions import SessionCounterRegistry
from memstore.store import ChatMessageStore, VectorStore

@pytest.fixture
def stores():
    chat = ChatMessageStore(StoreParams.chat(flush_interval_s=3600), persistence=InMemorySink())
    vectors = VectorStore(StoreParams.vector(flush_interval_s=3600), persistence=InMemorySink())
    return chat, vectors, SessionCounterRegistry()

@pytest.fixture
def client(stores):
    chat, vectors, sessions = stores
    with TestClient(create_app(chat, vectors, sessions)) as c:
        yield c

def test_health_and_info(client):
    r = client.get("/api/chat/health")
    assert r.status_code == 200
    assert r.json()["status"] == "UP"
    info = client.get("/api/chat/websocket/info").json()
    assert info["endpoint"] == "/ws/chat"
    assert info["sampleResponse"]["message_count"] == 1

def test_echo(client):
    r = client.post("/api/chat/echo", json={"hello": "world"})
    assert r.json()["echo"] == {"hello": "world"}

def test_store_and_list_messages(client):
    r = client.post("/api/chat/messages", json={"session_id": "s1", "content": "hi"})
    assert r.status_code == 201
    assert r.json()["role"] == "user"
    client.post("/api/chat/messages", json={"session_id": "s2", "content": "other"})
    msgs = client.get("/api/chat/sessions/s1/messages").json()
    assert [m["content"] for m in msgs] == ["hi"]

def test_stream_replays_history_up_to_limit(client):
    for t in ("a", "b"):
        client.post("/api/chat/messages", json={"session_id": "s1", "content": t})
    r = client.get("/api/chat/sessions/s1/stream", params={"limit": 2})
    assert r.status_code == 200
    events = [json.loads(line[len("data: "):]) for line in r.text.split("\n\n") if line.startswith("data: ")]
    assert [e["content"] for e in events] == ["a", "b"]

def test_websocket_counts_and_stores(client, stores):
    chat, _, sessions = stores
    with client.websocket_connect("/ws/chat?session_id=ws1") as ws:
        ws.send_text(json.dumps({"type": "message", "content": "hello"}))
        first = json.loads(ws.receive_text())
        ws.send_text(json.dumps({"content": "again"}))
        second = json.loads(ws.receive_text())
        assert "ws1" in sessions
    assert first["type"] == "response"
    assert first["content"] == 'Message received: "hello"'
    assert (first["message_count"], second["message_count"]) == (1, 2)
    assert [m.content for m in chat.session_messages("ws1")] == ["hello", "again"]
    assert "ws1" not in sessions

def test_websocket_bad_payload_returns_error(client):
    with client.websocket_connect("/ws/chat?session_id=ws2") as ws:
        ws.send_text(json.dumps({"content": "ok"}))
        ws.receive_text()
        ws.send_text("{not json")
        err = json.loads(ws.receive_text())
    assert err["type"] == "error"
    assert err["message_count"] == 1

def test_process_message_with_audio(stores):
    chat, _, sessions = stores
    sessions.on_connect("s")
    audio = {"mimeType": "audio/webm", "size": 12, "data": "QUJD"}
    resp = process_message(json.dumps({"content": "voice", "audio": audio}), "s", chat, sessions)
    assert resp.has_audio
    assert resp.content == 'Voice message received: "voice" [Audio: audio/webm, 12 bytes, 4 chars base64]'
    assert chat.session_messages("s")[0].metadata["has_audio"] is True

def test_process_message_for_closed_session(stores):
    chat, _, sessions = stores
    resp = process_message(json.dumps({"content": "late"}), "gone", chat, sessions)
    assert resp.type == "error"
    assert resp.message_count == 0
    assert chat.session_messages("gone") == []

def test_vector_crud_and_search(client, stores):
    _, vectors, _ = stores
    for v in ([1, 0], [0, 1], [1, 1]):
        assert client.post("/api/vectors", json={"content": str(v), "embedding": v}).status_code == 201
    assert client.get("/api/vectors/doc_2").json()["embedding"] == [0.0, 1.0]
    hits = client.post("/api/vectors/search", json={"embedding": [1, 0], "top_k": 2, "min_score": 0.0}).json()
    assert [h["id"] for h in hits] == ["doc_1", "doc_3"]
    assert hits[0]["score"] == pytest.approx(1.0)
    assert client.delete("/api/vectors/doc_1").json() == {"deleted": True, "id": "doc_1"}
    assert client.get("/api/vectors/doc_1").status_code == 404
    assert client.delete("/api/vectors/doc_1").status_code == 404
    assert [d["id"] for d in client.get("/api/vectors").json()] == ["doc_2", "doc_3"]

def test_search_dimension_mismatch_is_400(client):
    client.post("/api/vectors", json={"content": "x", "embedding": [1, 0, 0]})
    r = client.post("/api/vectors/search", json={"embedding": [1, 0]})
    assert r.status_code == 400
    r = client.post("/api/vectors/search", json={"embedding": [1, 0], "policy": "skip"})
    assert r.status_code == 200 and r.json() == []

def test_shutdown_flushes_pending_items(stores):
    chat, vectors, sessions = stores
    with TestClient(create_app(chat, vectors, sessions)) as c:
        c.post("/api/chat/messages", json={"session_id": "s", "content": "keep me"})
        c.post("/api/vectors", json={"content": "x", "embedding": [1.0]})
    assert len(chat.persistence.items) == 1
    assert list(vectors.persistence.items) == ["doc_1"]

def test_chat_response_is_frozen_and_dumps_snake_case():
    r = ChatResponse(type="response", content="hi", message_count=1, session_id="s", timestamp=1)
    with pytest.raises(ValidationError):
        r.content = "changed"
    assert json.loads(r.model_dump_json())["message_count"] == 1
