"""
Configuration for factgraph.

All settings can be supplied through environment variables prefixed with
``FACTGRAPH_`` or a ``.env`` file in the working directory.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from factgraph.core.graph import DEFAULT_EDGE_PRIORITY


class FactGraphSettings(BaseSettings):
    """Unified configuration for the knowledge engine."""

    model_config = SettingsConfigDict(
        env_prefix="FACTGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")

    # --- Embeddings ---
    embedding_provider: Literal["hashing", "openai"] = Field(default="hashing")
    embedding_dim: int = Field(default=256, gt=0, description="Dimension of the hashing embedder")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_max_tokens: int = Field(default=8000, gt=0)
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    embedding_workers: int = Field(default=4, gt=0, description="Threads used for embedding calls")

    # --- Ingestion ---
    max_batch_size: int = Field(default=500, gt=0)
    batch_timeout_seconds: float = Field(default=30.0, gt=0)
    multi_valued_predicates: list[str] = Field(
        default_factory=list,
        description="Predicates that keep one active fact per object instead of per subject"
    )

    # --- Query ---
    query_timeout_seconds: float = Field(default=10.0, gt=0)
    vector_top_n: int = Field(default=50, gt=0)
    result_top_k: int = Field(default=10, gt=0)
    vector_weight: float = Field(default=0.7, ge=0.0)
    graph_weight: float = Field(default=0.3, ge=0.0)
    graph_depth: int = Field(default=2, ge=0)
    edge_type_priority: list[str] = Field(default_factory=lambda: list(DEFAULT_EDGE_PRIORITY))

    # --- Cache ---
    cache_max_size: int = Field(default=10000, gt=0)
    cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # --- Persistence ---
    snapshot_backend: Literal["json", "sqlite"] = Field(default="json")
    snapshot_path: Optional[str] = Field(default=None, description="Unset disables persistence")
    snapshot_every: int = Field(default=0, ge=0, description="Persist every N versions (0 = manual)")

    # --- Audit ---
    audit_log_path: Optional[str] = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def validate_weights(self) -> FactGraphSettings:
        if self.vector_weight + self.graph_weight <= 0:
            raise ValueError("vector_weight + graph_weight must be positive")
        return self


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging, set the factgraph level and quiet the HTTP client libraries."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger("factgraph").setLevel(level)
    # Disable verbose HTTP logging
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
