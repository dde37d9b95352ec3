from __future__ import annotations

import time
from typing import Any, Sequence

import pytest

from mini_rag.config import ChunkingConfig, PipelineConfig
from mini_rag.generation.answer import AnswerGenerator
from mini_rag.ingest.embedder import HashingEmbedder
from mini_rag.pipeline.orchestrator import RagPipeline
from mini_rag.retrieval.reranker import KeywordOverlapReranker, Reranker
from mini_rag.retrieval.vector_store import InMemoryVectorStore
from mini_rag.types import Generation, RerankResult, TokenUsage, VectorRecord


class WordTokenizer:
    """Whitespace tokenizer: one token per word, decoded with single spaces."""

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._words: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens: list[int] = []
        for word in text.split():
            if word not in self._ids:
                self._ids[word] = len(self._words)
                self._words.append(word)
            tokens.append(self._ids[word])
        return tokens

    def decode(self, tokens: Sequence[int]) -> str:
        return " ".join(self._words[token] for token in tokens)


class StaticGenerator(AnswerGenerator):
    def __init__(self, text: str, usage: TokenUsage | None = None) -> None:
        self.text = text
        self.usage = usage or TokenUsage(prompt_tokens=1000, completion_tokens=200, total_tokens=1200)
        self.calls: list[tuple[str, str]] = []

    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        self.calls.append((system_prompt, user_prompt))
        return Generation(text=self.text, usage=self.usage)


class FailingGenerator(AnswerGenerator):
    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        raise RuntimeError("model unavailable")


class SlowGenerator(AnswerGenerator):
    def __init__(self, delay: float) -> None:
        self.delay = delay

    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        time.sleep(self.delay)
        return Generation(text="late [1]")


class FailingReranker(Reranker):
    def __init__(self) -> None:
        self.calls = 0

    def rerank(self, query: str, documents: list[Any], top_n: int) -> list[RerankResult]:
        self.calls += 1
        raise RuntimeError("rerank service down")


class ReversingReranker(Reranker):
    def rerank(self, query: str, documents: list[Any], top_n: int) -> list[RerankResult]:
        count = len(documents)
        return [
            RerankResult(original_index=idx, relevance_score=(idx + 1) / count)
            for idx in reversed(range(count))
        ][:top_n]


@pytest.fixture
def word_tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def vector_store():
    with InMemoryVectorStore() as store:
        yield store


def seed_store(store: InMemoryVectorStore, embedder: HashingEmbedder, texts: list[str]) -> list[str]:
    ids = [f"doc-{idx}" for idx in range(len(texts))]
    store.upsert(
        [
            VectorRecord(id=chunk_id, vector=embedder.embed(text), metadata={"text": text})
            for chunk_id, text in zip(ids, texts, strict=True)
        ]
    )
    return ids


@pytest.fixture
def small_config() -> PipelineConfig:
    return PipelineConfig(
        chunking=ChunkingConfig(min_tokens=5, max_tokens=20, overlap_percent=25),
        timeout_seconds=5.0,
    )


@pytest.fixture
def make_pipeline(embedder, vector_store, word_tokenizer, small_config):
    def _make(
        *,
        reranker: Reranker | None = None,
        generator: AnswerGenerator | None = None,
        config: PipelineConfig | None = None,
        store: Any | None = None,
        pipeline_embedder: Any | None = None,
    ) -> RagPipeline:
        return RagPipeline(
            pipeline_embedder or embedder,
            store if store is not None else vector_store,
            reranker or KeywordOverlapReranker(),
            generator or StaticGenerator("Answer [1]."),
            config=config or small_config,
            tokenizer=word_tokenizer,
        )

    return _make
