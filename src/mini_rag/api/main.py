"""FastAPI entrypoint for upload/query endpoints."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mini_rag.config import Settings
from mini_rag.errors import CollaboratorFailure, ConfigurationError, EmptyInputError
from mini_rag.generation.answer import ExtractiveAnswerGenerator, create_openai_generator
from mini_rag.ingest.embedder import HashingEmbedder, OpenAIEmbedder
from mini_rag.obs.logging import configure_logging
from mini_rag.obs.tracing import format_duration
from mini_rag.pipeline.orchestrator import RagPipeline
from mini_rag.retrieval.reranker import CohereReranker, KeywordOverlapReranker, Reranker
from mini_rag.retrieval.vector_store import InMemoryVectorStore
from mini_rag.types import QueryStatus

logger = structlog.get_logger(__name__)


class UploadRequest(BaseModel):
    text: str = Field(min_length=1)
    title: str = "Untitled Document"
    source: str = "manual-upload"
    file_name: str | None = None


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=10, ge=1, le=50)


def build_pipeline(settings: Settings) -> RagPipeline:
    """Wire OpenAI-backed collaborators when a key is configured, else offline ones."""

    timeout = settings.pipeline.timeout_seconds
    if settings.openai_api_key:
        embedder = OpenAIEmbedder(
            settings.embedding_model, settings.embedding_dimensions, timeout=timeout
        )
        generator = create_openai_generator(settings.chat_model, timeout=timeout)
        dimension = settings.embedding_dimensions
    else:
        embedder = HashingEmbedder()
        generator = ExtractiveAnswerGenerator()
        dimension = embedder.dimension

    reranker: Reranker
    if settings.cohere_api_key:
        reranker = CohereReranker(
            settings.rerank_model, api_key=settings.cohere_api_key, timeout=timeout
        )
    else:
        reranker = KeywordOverlapReranker()

    vector_store = InMemoryVectorStore(dimension=dimension)
    vector_store.initialize()
    return RagPipeline(
        embedder,
        vector_store,
        reranker,
        generator,
        config=settings.pipeline,
    )


def create_app(
    pipeline: RagPipeline | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, json=settings.log_json)
    rag = pipeline or build_pipeline(settings)

    app = FastAPI(title="mini-rag", version="0.1.0")
    app.state.pipeline = rag

    @app.get("/health")
    def health() -> dict[str, Any]:
        store_stats = getattr(rag.vector_store, "stats", None)
        return {
            "status": "ok",
            "llm_configured": bool(settings.openai_api_key),
            "reranker_configured": bool(settings.cohere_api_key),
            "index": store_stats() if callable(store_stats) else None,
        }

    @app.post("/upload")
    def upload(request: UploadRequest) -> dict[str, Any]:
        try:
            result = rag.ingest_document(
                request.text,
                source=request.source,
                title=request.title,
                file_name=request.file_name,
            )
        except (EmptyInputError, ConfigurationError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CollaboratorFailure as exc:
            logger.error("upload_failed", stage=exc.stage, error=exc.reason)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        return {
            "success": True,
            "chunk_count": len(result.segments),
            "chunk_ids": result.chunk_ids,
            "total_tokens": result.total_tokens,
            "processing_time": result.elapsed_ms,
            "processing_time_formatted": format_duration(result.elapsed_ms, always_seconds=True),
        }

    @app.post("/query")
    def query(request: QueryRequest) -> Any:
        try:
            result = rag.run_query(request.query, request.top_k)
        except (EmptyInputError, ConfigurationError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except CollaboratorFailure as exc:
            return JSONResponse(
                status_code=502,
                content={
                    "success": False,
                    "error": str(exc),
                    "stage": exc.stage,
                    "timing_metrics": exc.timings.to_dict() if exc.timings else None,
                },
            )

        if result.status is QueryStatus.NO_RESULTS:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": "No relevant chunks found",
                    "query": result.query,
                    "timing_metrics": result.timings.to_dict(),
                },
            )
        return {"success": True, **result.to_dict()}

    return app


app = create_app()
