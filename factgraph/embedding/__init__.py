"""Embedding functions for factgraph."""

from factgraph.embedding.providers import (
    Embedder,
    HashingEmbedder,
    OpenAIEmbedder,
    build_embedder,
)

__all__ = [
    "Embedder",
    "HashingEmbedder",
    "OpenAIEmbedder",
    "build_embedder",
]
