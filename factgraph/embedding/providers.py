"""
Embedding functions for factgraph.

The core treats embedding as an opaque, possibly slow, possibly failing
call. Two implementations are provided:

- HashingEmbedder: Deterministic signed feature hashing, no network
- OpenAIEmbedder: Any OpenAI-compatible embeddings endpoint
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import TYPE_CHECKING, Optional

import tiktoken
from openai import OpenAI

if TYPE_CHECKING:
    from factgraph.config import FactGraphSettings


logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


class Embedder(ABC):
    """Maps text to a fixed-length vector."""

    dim: Optional[int] = None

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""
        pass

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


class HashingEmbedder(Embedder):
    """
    Signed feature hashing over word tokens and their character trigrams.

    Identifiers are split on underscores, dashes and camel case so that
    ``serviceA`` in a question matches ``serviceA`` in a fact. Output is
    unit-normalized; text with no tokens embeds to the zero vector.
    """

    def __init__(self, dim: int = 256, trigram_weight: float = 0.5):
        if dim <= 0:
            raise ValueError("dim must be positive")
        self.dim = dim
        self._trigram_weight = trigram_weight

    @staticmethod
    def tokenize(text: str) -> list[str]:
        spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
        return _TOKEN.findall(spaced.lower())

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.sha1(feature.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % self.dim
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in self.tokenize(text):
            index, sign = self._bucket(f"w:{token}")
            vector[index] += sign
            padded = f"#{token}#"
            for i in range(len(padded) - 2):
                index, sign = self._bucket(f"c:{padded[i:i + 3]}")
                vector[index] += sign * self._trigram_weight

        norm = math.sqrt(sum(x * x for x in vector))
        if norm:
            vector = [x / norm for x in vector]
        return vector


@lru_cache(maxsize=10)
def _encoding_for(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("cl100k_base")


class OpenAIEmbedder(Embedder):
    """
    Embeddings from an OpenAI-compatible endpoint.

    Input longer than ``max_tokens`` is truncated with tiktoken before the
    request, so oversized facts never fail on the server side.

    Usage:
        ```python
        embedder = OpenAIEmbedder("text-embedding-3-small", api_key="sk-...")
        vector = embedder.embed("billing depends on ledger")
        ```
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 8000,
        client: Optional[OpenAI] = None,
    ):
        """
        Initialize the embedder.

        Args:
            model: Embedding model name
            api_key: API key (the client falls back to OPENAI_API_KEY)
            base_url: Base URL of an OpenAI-compatible API
            max_tokens: Token budget per input
            client: Pre-built client (for tests and shared connection pools)
        """
        self.model = model
        self._max_tokens = max_tokens
        self._client = client or OpenAI(api_key=api_key, base_url=base_url)

    def truncate(self, text: str) -> str:
        """Cut text down to the token budget."""
        encoding = _encoding_for(self.model)
        tokens = encoding.encode(text)
        if len(tokens) <= self._max_tokens:
            return text
        logger.debug("Truncating embedding input from %d to %d tokens", len(tokens), self._max_tokens)
        return encoding.decode(tokens[:self._max_tokens])

    def embed(self, text: str) -> list[float]:
        response = self._client.embeddings.create(model=self.model, input=self.truncate(text))
        vector = list(response.data[0].embedding)
        if self.dim is None:
            self.dim = len(vector)
        return vector

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        response = self._client.embeddings.create(
            model=self.model,
            input=[self.truncate(t) for t in texts],
        )
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


def build_embedder(settings: FactGraphSettings) -> Embedder:
    """Select the embedding function named by the settings."""
    if settings.embedding_provider == "openai":
        logger.info("Using OpenAI embeddings (%s)", settings.embedding_model)
        return OpenAIEmbedder(
            model=settings.embedding_model,
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            max_tokens=settings.embedding_max_tokens,
        )
    return HashingEmbedder(dim=settings.embedding_dim)
