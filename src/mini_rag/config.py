"""Configuration models for the RAG system."""

from __future__ import annotations

import math
import os

from pydantic import BaseModel, Field, ValidationError, model_validator

from mini_rag.errors import ConfigurationError


class ChunkingConfig(BaseModel):
    """Configures token-window chunking.

    The window is `max_tokens` long and advances by `step_size` tokens, so
    consecutive windows share `overlap_tokens` tokens.
    """

    min_tokens: int = Field(default=800, gt=0)
    max_tokens: int = Field(default=1200, gt=0)
    overlap_percent: float = Field(default=12.5, ge=0.0, lt=100.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ChunkingConfig":
        if self.min_tokens > self.max_tokens:
            raise ValueError(
                f"min_tokens ({self.min_tokens}) must not exceed max_tokens ({self.max_tokens})"
            )
        if self.step_size < 1:
            raise ValueError(
                f"overlap_percent={self.overlap_percent} leaves a step size of "
                f"{self.step_size} tokens for max_tokens={self.max_tokens}"
            )
        return self

    @property
    def overlap_tokens(self) -> int:
        return math.floor(self.max_tokens * self.overlap_percent / 100)

    @property
    def step_size(self) -> int:
        return self.max_tokens - self.overlap_tokens

    @classmethod
    def build(
        cls,
        min_tokens: int = 800,
        max_tokens: int = 1200,
        overlap_percent: float = 12.5,
    ) -> "ChunkingConfig":
        """Validate raw parameters, raising `ConfigurationError` on failure."""
        try:
            return cls(
                min_tokens=min_tokens,
                max_tokens=max_tokens,
                overlap_percent=overlap_percent,
            )
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc


class RetrievalConfig(BaseModel):
    """Configures candidate over-fetch ahead of reranking."""

    top_k: int = Field(default=10, ge=1)
    overfetch_factor: int = Field(default=2, ge=1)


class PricingConfig(BaseModel):
    """Token pricing in USD per one million tokens (gpt-4o-mini rate card)."""

    input_per_million: float = Field(default=0.15, ge=0.0)
    output_per_million: float = Field(default=0.60, ge=0.0)


class PipelineConfig(BaseModel):
    """Configures query orchestration and batch ingestion."""

    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    embed_batch_size: int = Field(default=100, ge=1)
    embed_concurrency: int = Field(default=4, ge=1)


class Settings(BaseModel):
    """Process settings resolved from the environment."""

    log_level: str = "INFO"
    log_json: bool = True
    openai_api_key: str | None = None
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = Field(default=1536, ge=1)
    cohere_api_key: str | None = None
    rerank_model: str = "rerank-english-v3.0"
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            return cls(
                log_level=os.getenv("MINI_RAG_LOG_LEVEL", "INFO"),
                log_json=os.getenv("MINI_RAG_LOG_JSON", "1") not in {"0", "false", "no"},
                openai_api_key=os.getenv("OPENAI_API_KEY") or None,
                chat_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
                embedding_dimensions=int(os.getenv("MINI_RAG_EMBEDDING_DIMENSIONS", "1536")),
                cohere_api_key=os.getenv("COHERE_API_KEY") or None,
                rerank_model=os.getenv("COHERE_RERANK_MODEL", "rerank-english-v3.0"),
                pipeline=PipelineConfig(
                    retrieval=RetrievalConfig(top_k=int(os.getenv("MINI_RAG_TOP_K", "10"))),
                    chunking=ChunkingConfig(
                        min_tokens=int(os.getenv("MINI_RAG_MIN_TOKENS", "800")),
                        max_tokens=int(os.getenv("MINI_RAG_MAX_TOKENS", "1200")),
                        overlap_percent=float(os.getenv("MINI_RAG_OVERLAP_PERCENT", "12.5")),
                    ),
                    timeout_seconds=float(os.getenv("MINI_RAG_TIMEOUT_SECONDS", "30")),
                ),
            )
        except (ValidationError, ValueError) as exc:
            raise ConfigurationError(f"Invalid environment configuration: {exc}") from exc
