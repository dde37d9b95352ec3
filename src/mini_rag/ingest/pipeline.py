"""Ingest pipeline: chunk -> embed -> upsert."""

from __future__ import annotations

import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any

import structlog

from mini_rag.config import ChunkingConfig, PipelineConfig
from mini_rag.errors import CollaboratorFailure, CollaboratorTimeout, EmptyInputError
from mini_rag.ingest.chunker import build_chunker
from mini_rag.ingest.embedder import Embedder
from mini_rag.ingest.tokenizer import Tokenizer
from mini_rag.obs.tracing import Timer
from mini_rag.pipeline.timeout import call_with_timeout
from mini_rag.retrieval.vector_store import VectorStore
from mini_rag.types import IngestionResult, Segment, VectorRecord

logger = structlog.get_logger(__name__)


class IngestPipeline:
    """Coordinates chunker/embedder/vector store stages for one document.

    Chunking is single-threaded and deterministic. Segment embeddings are
    requested in batches of `embed_batch_size`, up to `embed_concurrency`
    batches at a time; vectors are reassembled in segment order.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        *,
        config: PipelineConfig | None = None,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        self._embedder = embedder
        self._vector_store = vector_store
        self._config = config or PipelineConfig()
        self._tokenizer = tokenizer

    def chunk(
        self,
        text: str,
        chunking: ChunkingConfig | dict[str, Any] | None = None,
    ) -> list[Segment]:
        if not text or not text.strip():
            raise EmptyInputError("Content cannot be empty")
        chunker = build_chunker(chunking or self._config.chunking, self._tokenizer)
        return chunker.chunk(text)

    def ingest_text(
        self,
        text: str,
        *,
        source: str = "manual-upload",
        title: str = "Untitled Document",
        file_name: str | None = None,
        chunking: ChunkingConfig | dict[str, Any] | None = None,
    ) -> IngestionResult:
        """Chunk, embed and upsert one document.

        Record ids are `{source}-{timestamp_ms}-{idx}`; each record keeps the
        chunk text in its metadata so retrieval can hand it to the reranker.
        """

        with Timer() as timer:
            segments = self.chunk(text, chunking)
            if not segments:
                raise EmptyInputError("No chunks generated from content")

            vectors = self._embed_segments([segment.text for segment in segments])
            if len(vectors) != len(segments):
                raise CollaboratorFailure(
                    "embedding",
                    f"expected {len(segments)} vectors, got {len(vectors)}",
                )

            stamp = int(time.time() * 1000)
            records = [
                VectorRecord(
                    id=f"{source}-{stamp}-{idx}",
                    vector=vector,
                    metadata={
                        "chunk_id": f"{source}-{stamp}-{idx}",
                        "text": segment.text,
                        "source": source,
                        "title": title,
                        "section": f"chunk-{idx + 1}",
                        "position": idx,
                        "tokens": segment.token_count,
                        "file_name": file_name,
                    },
                )
                for idx, (segment, vector) in enumerate(zip(segments, vectors, strict=True))
            ]

            try:
                call_with_timeout(
                    "indexing", self._config.timeout_seconds, self._vector_store.upsert, records
                )
            except CollaboratorFailure:
                raise
            except Exception as exc:
                raise CollaboratorFailure("indexing", str(exc) or type(exc).__name__) from exc

        result = IngestionResult(
            segments=segments,
            chunk_ids=[record.id for record in records],
            total_tokens=sum(segment.token_count for segment in segments),
            elapsed_ms=timer.elapsed_ms,
        )
        logger.info(
            "document_ingested",
            source=source,
            chunk_count=len(segments),
            total_tokens=result.total_tokens,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    def _embed_segments(self, texts: list[str]) -> list[list[float]]:
        size = self._config.embed_batch_size
        batches = [texts[start : start + size] for start in range(0, len(texts), size)]
        workers = min(self._config.embed_concurrency, len(batches))
        timeout = self._config.timeout_seconds

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mini-rag-embed")
        try:
            futures = [executor.submit(self._embedder.embed_batch, batch) for batch in batches]
            # One deadline covers every batch of the document.
            done, pending = wait(futures, timeout=timeout, return_when=FIRST_EXCEPTION)
            for future in futures:
                error = future.exception() if future in done else None
                if error is not None:
                    raise error
            if pending:
                raise CollaboratorTimeout("embedding", f"timed out after {timeout:.1f}s")
            return [vector for future in futures for vector in future.result()]
        except CollaboratorFailure:
            raise
        except Exception as exc:
            raise CollaboratorFailure("embedding", str(exc) or type(exc).__name__) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
