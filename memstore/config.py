from __future__ import annotations
import os
from typing import Any, Dict, Literal
from pydantic import BaseModel, Field, model_validator

DimensionPolicy = Literal["fail", "skip"]

class StoreParams(BaseModel):
    name: str = "store"

    # Flush scheduler
    flush_interval_s: float = Field(default=5.0, gt=0, le=3600)
    batch_size: int = Field(default=100, ge=1, le=100_000)
    final_flush_on_stop: bool = True

    # Similarity search defaults (vector store)
    top_k: int = Field(default=10, ge=1, le=10_000)
    min_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    dimension_policy: DimensionPolicy = "fail"

    # Persistence collaborator, resolved through memstore.registry
    sink: str = "logging"
    sink_kwargs: Dict[str, Any] = Field(default_factory=dict)

    # Event sink
    subscriber_warn_backlog: int = Field(default=10_000, ge=1)

    @model_validator(mode="after")
    def _need_path_for_sqlite(self) -> "StoreParams":
        if self.sink == "sqlite" and not self.sink_kwargs.get("path"):
            raise ValueError("sink_kwargs.path is required for sink=sqlite")
        return self

    @classmethod
    def chat(cls, **overrides: Any) -> "StoreParams":
        base: Dict[str, Any] = {"name": "chat", "flush_interval_s": 5.0, "batch_size": 100}
        base.update(overrides)
        return cls(**base)

    @classmethod
    def vector(cls, **overrides: Any) -> "StoreParams":
        base: Dict[str, Any] = {"name": "vector", "flush_interval_s": 10.0, "batch_size": 50}
        base.update(overrides)
        return cls(**base)


class GatewayParams(BaseModel):
    service_name: str = "memstore-gateway"
    heartbeat_s: float = Field(default=10.0, gt=0, le=300)

    # Reliability
    max_concurrent_streams: int = Field(default=64, ge=1, le=10000)
    drain_seconds: int = Field(default=10, ge=1, le=300)


_ENV_FIELDS = ("flush_interval_s", "batch_size", "top_k", "min_score", "dimension_policy", "sink")

def params_from_env(prefix: str, preset: StoreParams) -> StoreParams:
    """Overlay ``{PREFIX}_FLUSH_INTERVAL_S``-style env vars on a preset.

    ``{PREFIX}_SINK_PATH`` feeds ``sink_kwargs["path"]``.
    """
    raw = preset.model_dump()
    for f in _ENV_FIELDS:
        v = os.getenv(f"{prefix}_{f.upper()}")
        if v is not None and v != "":
            raw[f] = v
    path = os.getenv(f"{prefix}_SINK_PATH")
    if path:
        raw["sink_kwargs"] = {**raw.get("sink_kwargs", {}), "path": path}
    return StoreParams(**raw)
