import threading
import time

import pytest

from mini_rag.errors import (
    CollaboratorFailure,
    CollaboratorTimeout,
    ConfigurationError,
    EmptyInputError,
)
from mini_rag.ingest.embedder import HashingEmbedder

_WORDS = " ".join(f"w{idx}" for idx in range(50))


class _RecordingEmbedder(HashingEmbedder):
    def __init__(self) -> None:
        super().__init__(dimension=32)
        self.batches: list[list[str]] = []
        self._lock = threading.Lock()

    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        with self._lock:
            self.batches.append(list(texts))
        return super()._embed_many(texts)


class _SlowEmbedder(HashingEmbedder):
    def __init__(self, delay: float) -> None:
        super().__init__(dimension=32)
        self.delay = delay

    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        time.sleep(self.delay)
        return super()._embed_many(texts)


class _BrokenBatchEmbedder(HashingEmbedder):
    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        raise ConnectionError("embedding quota exceeded")


class _FailingUpsertStore:
    def upsert(self, records) -> None:
        raise OSError("index is read-only")


def test_ingest_document_chunks_embeds_and_indexes(make_pipeline, vector_store, small_config) -> None:
    embedder = _RecordingEmbedder()
    config = small_config.model_copy(update={"embed_batch_size": 2})
    pipeline = make_pipeline(pipeline_embedder=embedder, config=config)

    result = pipeline.ingest_document(_WORDS, source="handbook", title="Handbook", file_name="hb.txt")

    assert [segment.token_count for segment in result.segments] == [20, 20, 20]
    assert sorted(len(batch) for batch in embedder.batches) == [1, 2]
    assert result.total_tokens == 60
    assert len(result.chunk_ids) == 3
    assert all(chunk_id.startswith("handbook-") for chunk_id in result.chunk_ids)
    assert [chunk_id.rsplit("-", 1)[1] for chunk_id in result.chunk_ids] == ["0", "1", "2"]
    assert vector_store.stats()["record_count"] == 3

    # Each stored vector belongs to the segment at the same position.
    for idx, segment in enumerate(result.segments):
        match = vector_store.query(embedder.embed(segment.text), top_k=1)[0]
        assert match.id == result.chunk_ids[idx]
        assert match.metadata["position"] == idx
        assert match.metadata["section"] == f"chunk-{idx + 1}"
        assert match.metadata["title"] == "Handbook"
        assert match.metadata["file_name"] == "hb.txt"
        assert match.text == segment.text


def test_ingested_document_is_queryable(make_pipeline) -> None:
    pipeline = make_pipeline()
    pipeline.ingest_document("Employees must encrypt customer data at rest.")

    result = pipeline.run_query("encrypt customer data", top_k=1)

    assert result.ranked_chunks[0].text == "Employees must encrypt customer data at rest."
    assert [citation.chunk_index for citation in result.citations] == [0]


def test_run_ingestion_only_chunks(make_pipeline, vector_store) -> None:
    segments = make_pipeline().run_ingestion(_WORDS, {"min_tokens": 5, "max_tokens": 30, "overlap_percent": 10})

    assert [segment.token_count for segment in segments] == [30, 23]
    assert vector_store.stats()["record_count"] == 0


@pytest.mark.parametrize("text", ["", "  \n\t "])
def test_ingestion_rejects_empty_text(make_pipeline, text) -> None:
    pipeline = make_pipeline()

    with pytest.raises(EmptyInputError):
        pipeline.run_ingestion(text)
    with pytest.raises(EmptyInputError):
        pipeline.ingest_document(text)


def test_ingestion_rejects_invalid_chunking(make_pipeline) -> None:
    with pytest.raises(ConfigurationError):
        make_pipeline().run_ingestion(_WORDS, {"min_tokens": 10, "max_tokens": 5})


def test_index_failure_is_reported_as_collaborator_failure(make_pipeline) -> None:
    pipeline = make_pipeline(store=_FailingUpsertStore())

    with pytest.raises(CollaboratorFailure) as excinfo:
        pipeline.ingest_document(_WORDS)

    assert excinfo.value.stage == "indexing"
    assert isinstance(excinfo.value.__cause__, OSError)


def test_embedding_batches_share_one_deadline(make_pipeline, vector_store, small_config) -> None:
    # Three batches of 50ms each run one after another; each fits the
    # 80ms bound alone, the whole document does not.
    config = small_config.model_copy(
        update={"embed_batch_size": 1, "embed_concurrency": 1, "timeout_seconds": 0.08}
    )
    pipeline = make_pipeline(pipeline_embedder=_SlowEmbedder(0.05), config=config)

    with pytest.raises(CollaboratorTimeout) as excinfo:
        pipeline.ingest_document(_WORDS)

    assert excinfo.value.stage == "embedding"
    assert vector_store.stats()["record_count"] == 0


def test_failing_embedding_batch_is_reported(make_pipeline, small_config) -> None:
    config = small_config.model_copy(update={"embed_batch_size": 1})
    pipeline = make_pipeline(pipeline_embedder=_BrokenBatchEmbedder(), config=config)

    with pytest.raises(CollaboratorFailure) as excinfo:
        pipeline.ingest_document(_WORDS)

    assert excinfo.value.stage == "embedding"
    assert isinstance(excinfo.value.__cause__, ConnectionError)
