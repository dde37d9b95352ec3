"""Query and ingestion orchestration: embed -> retrieve -> rerank -> answer."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Sequence, TypeVar

import structlog

from mini_rag.config import ChunkingConfig, PipelineConfig
from mini_rag.errors import CollaboratorFailure, ConfigurationError, EmptyInputError
from mini_rag.generation.answer import AnswerGenerator, build_prompts
from mini_rag.generation.citations import cited_chunk_ids, extract_citations
from mini_rag.ingest.embedder import Embedder
from mini_rag.ingest.pipeline import IngestPipeline
from mini_rag.ingest.tokenizer import Tokenizer
from mini_rag.obs.tracing import Timer, estimate_usage_cost
from mini_rag.pipeline.timeout import call_with_timeout
from mini_rag.retrieval.reranker import Reranker
from mini_rag.retrieval.vector_store import VectorStore
from mini_rag.types import (
    STAGES,
    IngestionResult,
    QueryResult,
    QueryStatus,
    RankedChunk,
    RerankResult,
    RetrievedChunk,
    Segment,
    StageTimings,
    TokenUsage,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

FALLBACK_SCORE_STEP = 0.01


def fallback_ranking(candidates: Sequence[RetrievedChunk], top_k: int) -> list[RankedChunk]:
    """Pass through the first `top_k` candidates in retrieval order.

    Scores descend from 1.0 in steps of 0.01. They keep the ordering monotonic
    but are not comparable to real relevance scores.
    """

    return [
        RankedChunk(
            id=chunk.id,
            text=chunk.text,
            score=1.0 - (idx * FALLBACK_SCORE_STEP),
            metadata=dict(chunk.metadata),
            index=idx,
        )
        for idx, chunk in enumerate(candidates[:top_k])
    ]


class RagPipeline:
    """Sequences the collaborators for one query or one ingestion request.

    The pipeline holds only its collaborators and configuration; every
    request builds its own timings, chunks and results, so one instance can
    serve concurrent requests.

    Query state machine (no back-edges):
    START -> EMBEDDED -> RETRIEVED -> RERANKED -> ANSWERED -> DONE, with
    FAILED reachable from any stage. Embedding, retrieval and answering
    failures are fatal and raise `CollaboratorFailure`; reranking failures
    fall back to retrieval order. An empty retrieval ends the query with
    `QueryStatus.NO_RESULTS`.
    """

    def __init__(
        self,
        embedder: Embedder,
        vector_store: VectorStore,
        reranker: Reranker,
        answer_generator: AnswerGenerator,
        *,
        config: PipelineConfig | None = None,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.reranker = reranker
        self.answer_generator = answer_generator
        self.config = config or PipelineConfig()
        self.ingestion = IngestPipeline(
            embedder, vector_store, config=self.config, tokenizer=tokenizer
        )

    def run_query(
        self,
        query: str,
        top_k: int | None = None,
        *,
        metadata_filter: dict[str, Any] | None = None,
    ) -> QueryResult:
        """Answer `query` from the indexed chunks.

        Returns:
            A `QueryResult` with status `ANSWERED`, or `NO_RESULTS` when
            retrieval finds nothing.

        Raises:
            EmptyInputError: `query` is empty.
            ConfigurationError: `top_k` is not positive.
            CollaboratorFailure: a fatal stage failed; `timings` holds the
                stage timings collected up to and including the failure.
        """

        if not query or not query.strip():
            raise EmptyInputError("Query is required")
        top_k = self.config.retrieval.top_k if top_k is None else top_k
        if top_k < 1:
            raise ConfigurationError(f"top_k must be >= 1, got {top_k}")

        timings: dict[str, float] = {}
        overall = Timer().start()

        vector = self._run_stage("embedding", timings, overall, self.embedder.embed, query)

        candidate_count = top_k * self.config.retrieval.overfetch_factor
        raw_chunks: list[RetrievedChunk] = self._run_stage(
            "retrieval",
            timings,
            overall,
            self.vector_store.query,
            vector,
            candidate_count,
            metadata_filter,
        )

        if not raw_chunks:
            for stage in STAGES:
                timings.setdefault(stage, 0.0)
            overall.stop()
            result = QueryResult(
                query=query,
                status=QueryStatus.NO_RESULTS,
                answer="",
                citations=[],
                ranked_chunks=[],
                raw_chunks=[],
                timings=StageTimings.build(timings, overall.elapsed_ms),
                usage=TokenUsage(),
                cost=estimate_usage_cost(TokenUsage(), self.config.pricing),
            )
            logger.info("query_no_results", top_k=top_k, **result.timings.stages)
            return result

        ranked_chunks = self._rerank(query, raw_chunks, top_k, timings)

        system_prompt, user_prompt = build_prompts(query, ranked_chunks)
        generation = self._run_stage(
            "answering",
            timings,
            overall,
            self.answer_generator.generate,
            system_prompt,
            user_prompt,
        )

        citations = extract_citations(generation.text, ranked_chunks)
        cost = estimate_usage_cost(generation.usage, self.config.pricing)
        overall.stop()

        result = QueryResult(
            query=query,
            status=QueryStatus.ANSWERED,
            answer=generation.text,
            citations=citations,
            ranked_chunks=ranked_chunks,
            raw_chunks=raw_chunks,
            timings=StageTimings.build(timings, overall.elapsed_ms),
            usage=generation.usage,
            cost=cost,
        )
        logger.info(
            "query_completed",
            top_k=top_k,
            candidates=len(raw_chunks),
            ranked=len(ranked_chunks),
            cited=cited_chunk_ids(citations),
            total_tokens=generation.usage.total_tokens,
            cost=cost.formatted,
            total_ms=result.timings.total,
        )
        return result

    def run_ingestion(
        self,
        text: str,
        chunking: ChunkingConfig | dict[str, Any] | None = None,
    ) -> list[Segment]:
        """Chunk `text` only; embedding and storage are left to the caller."""
        return self.ingestion.chunk(text, chunking)

    def ingest_document(
        self,
        text: str,
        *,
        source: str = "manual-upload",
        title: str = "Untitled Document",
        file_name: str | None = None,
        chunking: ChunkingConfig | dict[str, Any] | None = None,
    ) -> IngestionResult:
        return self.ingestion.ingest_text(
            text, source=source, title=title, file_name=file_name, chunking=chunking
        )

    def _run_stage(
        self,
        stage: str,
        timings: dict[str, float],
        overall: Timer,
        func: Callable[..., T],
        *args: Any,
    ) -> T:
        timer = Timer()
        try:
            with timer:
                result = call_with_timeout(stage, self.config.timeout_seconds, func, *args)
        except CollaboratorFailure as exc:
            timings[stage] = timer.elapsed_ms
            exc.timings = StageTimings.build(timings, overall.running_ms)
            logger.error("stage_failed", stage=stage, error=exc.reason, **timings)
            raise
        except Exception as exc:
            timings[stage] = timer.elapsed_ms
            reason = str(exc) or type(exc).__name__
            logger.error("stage_failed", stage=stage, error=reason, **timings)
            raise CollaboratorFailure(
                stage, reason, timings=StageTimings.build(timings, overall.running_ms)
            ) from exc
        timings[stage] = timer.elapsed_ms
        return result

    def _rerank(
        self,
        query: str,
        raw_chunks: list[RetrievedChunk],
        top_k: int,
        timings: dict[str, float],
    ) -> list[RankedChunk]:
        documents = [
            {"id": chunk.id, "text": chunk.text, "metadata": chunk.metadata}
            for chunk in raw_chunks
        ]
        with Timer() as timer:
            try:
                results = call_with_timeout(
                    "reranking",
                    self.config.timeout_seconds,
                    self.reranker.rerank,
                    query,
                    documents,
                    top_k,
                )
                ranked = _apply_rerank(raw_chunks, results, top_k)
            except Exception as exc:
                logger.warning(
                    "rerank_fallback",
                    error=str(exc) or type(exc).__name__,
                    candidates=len(raw_chunks),
                    top_k=top_k,
                )
                ranked = fallback_ranking(raw_chunks, top_k)
        timings["reranking"] = timer.elapsed_ms
        return ranked


def _apply_rerank(
    raw_chunks: Sequence[RetrievedChunk],
    results: Sequence[RerankResult],
    top_k: int,
) -> list[RankedChunk]:
    ranked: list[RankedChunk] = []
    for result in list(results)[:top_k]:
        idx = result.original_index
        if not 0 <= idx < len(raw_chunks):
            raise IndexError(f"reranker returned out-of-range index {idx}")
        chunk = raw_chunks[idx]
        ranked.append(
            RankedChunk(
                id=chunk.id,
                text=chunk.text,
                score=float(result.relevance_score),
                metadata=dict(chunk.metadata),
                index=idx,
            )
        )
    if not ranked:
        raise ValueError("reranker returned no results")
    return ranked
