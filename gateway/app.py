import os, json, time, asyncio, logging, uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Literal, Optional
from fastapi import FastAPI, Request, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from memstore.config import GatewayParams, StoreParams, params_from_env
from memstore.errors import DimensionMismatch, SessionNotFound
from memstore.items import ChatMessage, VectorDocument
from memstore.observability import init_prom, init_tracing
from memstore.reliability import ConcurrencyGate, StreamsDraining
from memstore.sessions import SessionCounterRegistry
from memstore.store import ChatMessageStore, VectorStore

log = logging.getLogger(__name__)

SERVICE = os.getenv("SERVICE_NAME", "navigation-service")
CORS_ORIGINS = [o for o in os.getenv("CORS_ORIGINS", "*").split(",") if o]
HB_SEC = float(os.getenv("HEARTBEAT_SEC", "10"))


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    content: str
    message_count: int
    session_id: str
    timestamp: int
    has_audio: bool = False

class MessageIn(BaseModel):
    session_id: str
    content: str
    role: str = "user"
    metadata: Dict[str, Any] = Field(default_factory=dict)

class MessageOut(BaseModel):
    id: int
    session_id: str
    content: Optional[str]
    role: Optional[str]
    timestamp: datetime
    metadata: Dict[str, Any]

class DocumentIn(BaseModel):
    content: str
    embedding: List[float] = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

class DocumentOut(BaseModel):
    id: str
    content: Optional[str]
    embedding: Optional[List[float]]
    metadata: Dict[str, Any]
    timestamp: datetime

class SearchIn(BaseModel):
    embedding: List[float] = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=10_000)
    min_score: Optional[float] = None
    policy: Optional[Literal["fail", "skip"]] = None

class SearchHit(BaseModel):
    id: str
    score: float
    content: Optional[str]
    metadata: Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)

def _message_out(m: ChatMessage) -> MessageOut:
    return MessageOut(**asdict(m))

def _document_out(d: VectorDocument) -> DocumentOut:
    return DocumentOut(**asdict(d))


def process_message(payload: str, session_id: str, chat: ChatMessageStore,
                    sessions: SessionCounterRegistry) -> ChatResponse:
    """Handle one inbound socket message: count it, store it, build the reply."""
    try:
        node = json.loads(payload)
        if not isinstance(node, dict):
            raise ValueError("message must be a JSON object")
        content = str(node.get("content") or "")
        kind = str(node.get("type") or "message")

        has_audio = node.get("audio") is not None
        audio_info = ""
        if has_audio:
            audio = node["audio"] if isinstance(node["audio"], dict) else {}
            mime = audio.get("mimeType", "unknown")
            size = int(audio.get("size", 0) or 0)
            data = str(audio.get("data", "") or "")
            audio_info = f" [Audio: {mime}, {size} bytes, {len(data)} chars base64]"
            log.info("Received audio data: mimeType=%s, size=%d bytes, base64Length=%d", mime, size, len(data))

        count = sessions.increment(session_id)
        log.info("Processing message #%d from session %s: %s%s", count, session_id, content, audio_info)
        chat.store_message(session_id, content, "user", {"type": kind, "has_audio": has_audio})

        text = (f'Voice message received: "{content}"{audio_info}' if has_audio
                else f'Message received: "{content}"')
        return ChatResponse(type="response", content=text, message_count=count,
                            session_id=session_id, timestamp=_now_ms(), has_audio=has_audio)
    except (ValueError, TypeError, SessionNotFound) as e:
        log.error("Error processing message from session %s: %s", session_id, e)
        return ChatResponse(type="error", content=f"Error processing message: {e}",
                            message_count=sessions.get(session_id) or 0,
                            session_id=session_id, timestamp=_now_ms())


def create_app(chat: Optional[ChatMessageStore] = None, vectors: Optional[VectorStore] = None,
               sessions: Optional[SessionCounterRegistry] = None,
               params: Optional[GatewayParams] = None) -> FastAPI:
    params = params or GatewayParams(service_name=SERVICE, heartbeat_s=HB_SEC)
    if chat is None:
        chat = ChatMessageStore(params_from_env("CHAT", StoreParams.chat()))
    if vectors is None:
        vectors = VectorStore(params_from_env("VECTOR", StoreParams.vector()))
    if sessions is None:
        sessions = SessionCounterRegistry()
    gate = ConcurrencyGate(params.max_concurrent_streams, params.drain_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        init_prom("PROM_PORT")
        if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
            init_tracing(params.service_name)
        gate.install_sigterm_handler()
        chat.start()
        vectors.start()
        try:
            yield
        finally:
            gate.start_drain()
            await gate.wait_drained()
            await chat.stop()
            await vectors.stop()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_methods=["*"], allow_headers=["*"])
    app.state.chat, app.state.vectors, app.state.sessions, app.state.gate = chat, vectors, sessions, gate

    # -- chat
    @app.get("/api/chat/health")
    async def health():
        return {
            "status": "UP",
            "service": params.service_name,
            "websocket": "enabled",
            "endpoint": "/ws/chat",
            "sessions": len(sessions),
            "pending": {"chat": len(chat.queue), "vector": len(vectors.queue)},
            "timestamp": datetime.now().isoformat(),
        }

    @app.get("/api/chat/websocket/info")
    async def websocket_info():
        return {
            "endpoint": "/ws/chat",
            "protocol": "WebSocket",
            "messageFormat": "JSON",
            "features": {
                "messageCount": "Tracks messages per session",
                "sessionManagement": "Automatic session cleanup",
                "errorHandling": "Graceful error responses",
            },
            "sampleMessage": {"type": "message", "content": "Hello, this is a test message"},
            "sampleResponse": ChatResponse(type="response", content='Message received: "Hello, this is a test message"',
                                           message_count=1, session_id="generated-session-id",
                                           timestamp=_now_ms()).model_dump(),
        }

    @app.post("/api/chat/echo")
    async def echo(message: Dict[str, Any]):
        log.info("Echo request received: %s", message)
        return {"echo": message, "timestamp": datetime.now().isoformat(), "service": params.service_name}

    @app.post("/api/chat/messages", response_model=MessageOut, status_code=201)
    async def store_message(body: MessageIn):
        return _message_out(chat.store_message(body.session_id, body.content, body.role, body.metadata))

    @app.get("/api/chat/sessions/{session_id}/messages", response_model=List[MessageOut])
    async def session_messages(session_id: str):
        return [_message_out(m) for m in chat.session_messages(session_id)]

    @app.get("/api/chat/sessions/{session_id}/stream")
    async def stream_session(session_id: str, request: Request, limit: Optional[int] = None, replay: bool = True):
        if gate.draining:
            raise HTTPException(503, "Draining")

        async def gen() -> AsyncGenerator[str, None]:
            sent = 0
            try:
                async with gate.slot(), chat.subscribe_session(session_id, replay=replay) as sub:
                    last = time.monotonic()
                    while limit is None or sent < limit:
                        try:
                            msg = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
                        except asyncio.TimeoutError:
                            if time.monotonic() - last > params.heartbeat_s:
                                yield ": heartbeat\n\n"
                                last = time.monotonic()
                            if await request.is_disconnected(): break
                            continue
                        except StopAsyncIteration:
                            break
                        yield f"data: {_message_out(msg).model_dump_json()}\n\n"
                        sent += 1
                        last = time.monotonic()
                        if await request.is_disconnected(): break
            except StreamsDraining:
                yield "event: close\ndata: draining\n\n"

        return StreamingResponse(gen(), media_type="text/event-stream")

    @app.websocket("/ws/chat")
    async def chat_socket(ws: WebSocket):
        await ws.accept()
        session_id = ws.query_params.get("session_id") or uuid.uuid4().hex
        sessions.on_connect(session_id)
        log.info("WebSocket connection established for session: %s", session_id)
        try:
            while True:
                payload = await ws.receive_text()
                log.debug("Received message from %s: %s", session_id, payload)
                await ws.send_text(process_message(payload, session_id, chat, sessions).model_dump_json())
        except WebSocketDisconnect as e:
            log.info("WebSocket connection closed for session: %s (%s)", session_id, e.code)
        finally:
            sessions.on_close(session_id)

    # -- vectors
    @app.post("/api/vectors", response_model=DocumentOut, status_code=201)
    async def store_document(body: DocumentIn):
        return _document_out(vectors.store_document(body.content, body.embedding, body.metadata))

    @app.get("/api/vectors", response_model=List[DocumentOut])
    async def all_documents():
        return [_document_out(d) for d in vectors.all_documents()]

    @app.get("/api/vectors/{doc_id}", response_model=DocumentOut)
    async def get_document(doc_id: str):
        doc = vectors.get_document(doc_id)
        if doc is None:
            raise HTTPException(404, f"Unknown document '{doc_id}'")
        return _document_out(doc)

    @app.delete("/api/vectors/{doc_id}")
    async def delete_document(doc_id: str):
        if not vectors.delete_document(doc_id):
            raise HTTPException(404, f"Unknown document '{doc_id}'")
        return {"deleted": True, "id": doc_id}

    @app.post("/api/vectors/search", response_model=List[SearchHit])
    async def search(body: SearchIn):
        try:
            hits = vectors.search(body.embedding, body.top_k, body.min_score, body.policy)
        except DimensionMismatch as e:
            raise HTTPException(400, str(e))
        return [SearchHit(id=h.document.id, score=h.score, content=h.document.content,
                          metadata=h.document.metadata) for h in hits]

    return app


app = create_app()
