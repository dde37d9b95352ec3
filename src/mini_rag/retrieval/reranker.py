"""Reranking collaborators."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Mapping

from mini_rag.types import RerankResult

_TERM_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


class Reranker(ABC):
    """Reorders candidate documents by relevance to a query."""

    @abstractmethod
    def rerank(
        self,
        query: str,
        documents: list[Mapping[str, Any]],
        top_n: int,
    ) -> list[RerankResult]:
        """Return at most `top_n` results ordered by descending relevance.

        Each document is a mapping with at least `id` and `text`; each result
        points back to its document by `original_index`.
        """


class KeywordOverlapReranker(Reranker):
    """Lightweight reranker using query-document lexical overlap.

    The relevance score blends term recall (share of query terms present in
    the document) with a small positional prior so that ties keep retrieval
    order.
    """

    def __init__(self, position_weight: float = 0.05) -> None:
        self.position_weight = position_weight

    def describe(self) -> dict[str, Any]:
        return {"model": "keyword-overlap"}

    def rerank(
        self,
        query: str,
        documents: list[Mapping[str, Any]],
        top_n: int,
    ) -> list[RerankResult]:
        if not query or not documents or top_n < 1:
            return []

        query_terms = set(_terms(query))
        total = len(documents)
        scored: list[RerankResult] = []
        for idx, document in enumerate(documents):
            doc_terms = set(_terms(str(document.get("text") or "")))
            overlap = len(query_terms & doc_terms) / max(1, len(query_terms))
            prior = (total - idx) / total
            score = (overlap * (1.0 - self.position_weight)) + (prior * self.position_weight)
            scored.append(RerankResult(original_index=idx, relevance_score=score))

        scored.sort(key=lambda item: item.relevance_score, reverse=True)
        return scored[: min(top_n, total)]


def _terms(text: str) -> list[str]:
    return [term.lower() for term in _TERM_PATTERN.findall(text)]


class CohereReranker(Reranker):
    """Reranker backed by the Cohere rerank endpoint."""

    def __init__(
        self,
        model: str = "rerank-english-v3.0",
        *,
        api_key: str | None = None,
        client: Any | None = None,
        timeout: float | None = None,
    ) -> None:
        self.model = model
        if client is None:
            import cohere

            client = cohere.ClientV2(api_key=api_key, timeout=timeout)
        self._client = client

    def describe(self) -> dict[str, Any]:
        return {"model": self.model}

    def rerank(
        self,
        query: str,
        documents: list[Mapping[str, Any]],
        top_n: int,
    ) -> list[RerankResult]:
        if not query or not documents or top_n < 1:
            return []

        response = self._client.rerank(
            model=self.model,
            query=query,
            documents=[str(document.get("text") or "") for document in documents],
            top_n=min(top_n, len(documents)),
        )
        results = [
            RerankResult(original_index=int(item.index), relevance_score=float(item.relevance_score))
            for item in response.results
        ]
        results.sort(key=lambda item: item.relevance_score, reverse=True)
        return results
