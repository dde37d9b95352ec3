"""Shared domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

STAGES: tuple[str, ...] = ("embedding", "retrieval", "reranking", "answering")


@dataclass(slots=True)
class Segment:
    """A token-bounded span of source text.

    Offsets are advisory character positions measured by decoding the token
    prefix; they are not guaranteed to be exact slice bounds.
    """

    text: str
    token_count: int
    start_offset: int
    end_offset: int


@dataclass(slots=True)
class VectorRecord:
    """One upsert unit for the vector store."""

    id: str
    vector: list[float]
    metadata: dict[str, Any]


@dataclass(slots=True)
class RetrievedChunk:
    """A raw retrieval match, before reranking."""

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str(self.metadata.get("text") or "")


@dataclass(slots=True)
class RankedChunk:
    """A reranked chunk; `index` is its position in the raw candidate list."""

    id: str
    text: str
    score: float
    metadata: dict[str, Any]
    index: int


@dataclass(slots=True)
class RerankResult:
    original_index: int
    relevance_score: float


@dataclass(slots=True, frozen=True)
class Citation:
    """An inline `[n]` marker resolved to a ranked chunk."""

    chunk_id: str
    position: int
    chunk_index: int


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True, frozen=True)
class CostEstimate:
    input: float
    output: float
    total: float
    formatted: str


@dataclass(slots=True)
class Generation:
    """Answer-generator output."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(slots=True, frozen=True)
class StageTimings:
    """Per-stage elapsed milliseconds for one request, frozen once assembled."""

    stages: Mapping[str, float]
    total: float

    @classmethod
    def build(cls, stages: Mapping[str, float], total: float) -> "StageTimings":
        return cls(stages=MappingProxyType(dict(stages)), total=total)

    def formatted(self) -> dict[str, str]:
        from mini_rag.obs.tracing import format_duration

        output = {name: f"{elapsed:.0f}ms" for name, elapsed in self.stages.items()}
        output["total"] = format_duration(self.total, always_seconds=True)
        return output

    def to_dict(self) -> dict[str, Any]:
        return {**self.stages, "total": self.total, "formatted": self.formatted()}


class QueryStatus(str, Enum):
    ANSWERED = "answered"
    NO_RESULTS = "no_results"


@dataclass(slots=True)
class QueryResult:
    """Final payload of one query, as plain structured data."""

    query: str
    status: QueryStatus
    answer: str
    citations: list[Citation]
    ranked_chunks: list[RankedChunk]
    raw_chunks: list[RetrievedChunk]
    timings: StageTimings
    usage: TokenUsage
    cost: CostEstimate

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "status": self.status.value,
            "final_answer": self.answer,
            "citations": [asdict(citation) for citation in self.citations],
            "reranked_chunks": [
                {
                    "id": chunk.id,
                    "text": chunk.text,
                    "score": chunk.score,
                    "metadata": chunk.metadata,
                }
                for chunk in self.ranked_chunks
            ],
            "raw_chunks": [
                {"id": chunk.id, "score": chunk.score, "metadata": chunk.metadata}
                for chunk in self.raw_chunks
            ],
            "timing_metrics": self.timings.to_dict(),
            "token_usage": asdict(self.usage),
            "cost_estimate": asdict(self.cost),
        }


@dataclass(slots=True)
class IngestionResult:
    segments: list[Segment]
    chunk_ids: list[str]
    total_tokens: int
    elapsed_ms: float
