"""Vector store contract and in-memory implementation."""

from __future__ import annotations

import threading
from math import sqrt
from typing import Any, Protocol

import structlog

from mini_rag.types import RetrievedChunk, VectorRecord

logger = structlog.get_logger(__name__)

UPSERT_BATCH_SIZE = 100


class VectorStore(Protocol):
    """Minimal vector store contract for ingestion and retrieval."""

    def initialize(self) -> None:
        """Create the backing index if needed. Idempotent."""

    def upsert(self, records: list[VectorRecord]) -> None:
        """Insert or replace records by id."""

    def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievedChunk]:
        """Return up to `top_k` matches ordered by descending score."""

    def close(self) -> None:
        """Release the handle."""


class InMemoryVectorStore:
    """Deterministic cosine-similarity store used for tests and local runs.

    The store is an explicit handle: build it once, call `initialize()` (or use
    it as a context manager), and pass it to the pipeline. Initialization is
    guarded by a lock so concurrent ingestion requests create the index once.
    """

    def __init__(self, name: str = "mini-rag", *, dimension: int | None = None) -> None:
        self.name = name
        self.dimension = dimension
        self._lock = threading.Lock()
        self._records: dict[str, VectorRecord] | None = None
        self._closed = False
        self.create_count = 0

    def __enter__(self) -> "InMemoryVectorStore":
        self.initialize()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def initialized(self) -> bool:
        return self._records is not None

    def initialize(self) -> None:
        """Create the index, or reopen it empty after `close()`."""
        with self._lock:
            self._closed = False
            self._open_records()

    def close(self) -> None:
        """Drop all records. Further `upsert`/`query` calls raise until `initialize()`."""
        with self._lock:
            self._records = None
            self._closed = True

    def upsert(self, records: list[VectorRecord]) -> None:
        if not records:
            return
        for record in records:
            if self.dimension is not None and len(record.vector) != self.dimension:
                raise ValueError(
                    f"vector for {record.id} has dimension {len(record.vector)}, "
                    f"expected {self.dimension}"
                )
        with self._lock:
            store = self._open_records()
            for start in range(0, len(records), UPSERT_BATCH_SIZE):
                for record in records[start : start + UPSERT_BATCH_SIZE]:
                    store[record.id] = VectorRecord(
                        id=record.id,
                        vector=list(record.vector),
                        metadata=dict(record.metadata),
                    )

    def query(
        self,
        vector: list[float],
        top_k: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[RetrievedChunk]:
        with self._lock:
            candidates = [
                record
                for record in self._open_records().values()
                if _metadata_match(record.metadata, metadata_filter)
            ]
        ranked = sorted(
            (
                RetrievedChunk(
                    id=record.id,
                    score=_cosine_similarity(vector, record.vector),
                    metadata=dict(record.metadata),
                )
                for record in candidates
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return ranked[:top_k]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            count = len(self._records) if self._records is not None else 0
        return {"index": self.name, "dimension": self.dimension, "record_count": count}

    def _open_records(self) -> dict[str, VectorRecord]:
        # Caller holds self._lock. A never-opened store is created on first use.
        if self._records is None:
            if self._closed:
                raise RuntimeError(f"Vector index {self.name!r} is closed")
            self._records = {}
            self.create_count += 1
            logger.info("vector_index_created", index=self.name, dimension=self.dimension)
        return self._records


def _metadata_match(
    metadata: dict[str, Any], metadata_filter: dict[str, Any] | None
) -> bool:
    if not metadata_filter:
        return True
    for key, value in metadata_filter.items():
        if metadata.get(key) != value:
            return False
    return True


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
