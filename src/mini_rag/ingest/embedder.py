"""Embedding collaborators: contract, deterministic baseline, OpenAI adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from mini_rag.errors import EmptyInputError


class Embedder(ABC):
    """Embedder interface used by ingestion and query-time retrieval."""

    def embed(self, text: str) -> list[float]:
        """Embed one non-empty text."""
        if not text or not text.strip():
            raise EmptyInputError("Text to embed cannot be empty")
        return self._embed_one(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in order; empty entries are dropped before the call."""
        valid = [text for text in texts if text and text.strip()]
        if not valid:
            return []
        return self._embed_many(valid)

    @abstractmethod
    def _embed_one(self, text: str) -> list[float]:
        """Embed one text that is known to be non-empty."""

    @abstractmethod
    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed texts that are known to be non-empty."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and offline runs. In production, use `OpenAIEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def describe(self) -> dict[str, Any]:
        return {"model": "hashing", "dimension": self.dimension}

    def _embed_one(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbedder(Embedder):
    """OpenAI embeddings through `langchain_openai.OpenAIEmbeddings`."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        *,
        client: Any | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        self.dimension = dimensions
        if client is None:
            from langchain_openai import OpenAIEmbeddings

            client = OpenAIEmbeddings(model=model, dimensions=dimensions, request_timeout=timeout)
        self._client = client

    def describe(self) -> dict[str, Any]:
        return {"model": self.model, "dimension": self.dimension}

    def _embed_one(self, text: str) -> list[float]:
        return list(self._client.embed_query(text))

    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self._client.embed_documents(texts)]
