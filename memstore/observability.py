"""Prometheus metrics and OpenTelemetry tracing init."""
from __future__ import annotations
import logging, os
from typing import Optional
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

STORED = Counter("memstore_items_stored_total", "Items stored", ["store"])
DELETED = Counter("memstore_items_deleted_total", "Items deleted", ["store"])
FLUSHED = Counter("memstore_items_flushed_total", "Items handed to the persistence sink", ["store", "op"])
FLUSH_FAILURES = Counter("memstore_flush_failures_total", "Failed persistence calls", ["store", "op"])
FLUSH_SKIPPED = Counter("memstore_flush_skipped_total", "Ticks skipped because a flush was in progress", ["store"])
FLUSH_LAT = Histogram("memstore_flush_latency_seconds", "Flush tick latency", ["store"])
QUEUE_DEPTH = Gauge("memstore_queue_depth", "Items waiting for persistence", ["store"])
BACKLOG = Gauge("memstore_subscriber_backlog", "Undelivered items across subscribers", ["store"])
SEARCHES = Counter("memstore_searches_total", "Similarity searches", ["store"])

log = logging.getLogger(__name__)

def init_prom(env: str = "PROM_PORT") -> int:
    """Serve /metrics on the port named by ``env``; returns that port, 0 if unset."""
    port = int(os.getenv(env, "0") or "0")
    if port:
        start_http_server(port)
        log.info("Prometheus metrics on :%d", port)
    return port

def init_tracing(service: str = "memstore", endpoint: Optional[str] = None) -> TracerProvider:
    """Export flush spans over OTLP gRPC, to ``endpoint`` or $OTEL_EXPORTER_OTLP_ENDPOINT."""
    endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    provider = TracerProvider(resource=Resource.create({"service.name": service, "service.namespace": "memstore"}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(provider)
    log.info("Tracing '%s' to %s", service, endpoint)
    return provider

tracer = trace.get_tracer(__name__)
