import asyncio
from collections.abc import Iterator
from pathlib import Path
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from contextual_rag.db import Base
from contextual_rag.llm import LLMClientError
from contextual_rag.services.rag.annotator import (
    SUMMARY_SYSTEM_PROMPT,
    ChunkAnnotator,
    ContextualizationError,
)
from contextual_rag.services.rag.batching import FixedBatchScheduler
from contextual_rag.services.rag.ingest import DocumentIngestionService
from contextual_rag.services.rag.synthesizer import ContextSynthesizer
from contextual_rag.services.rag.types import (
    AnnotationOptions,
    BatchConfig,
    ContextualIngestOptions,
    StoredDocument,
)
from contextual_rag.services.rag.vector_store import SqlVectorStore


class FakeEmbeddingClient:
    def __init__(self) -> None:
        self.requests: list[list[str]] = []

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.requests.append(list(texts))
        return [[1.0, float(len(text))] for text in texts]


class FakeTextGenerator:
    def __init__(self, *, fail_contexts: bool = False) -> None:
        self._fail_contexts = fail_contexts

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        if system_prompt == SUMMARY_SYSTEM_PROMPT:
            return "a summary"
        if self._fail_contexts:
            raise LLMClientError("simulated failure")
        marker = next(line for line in user_prompt.splitlines() if line.startswith("Chunk "))
        return f"Context for {marker}."


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'ingest.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


def _service(
    engine: Engine,
    embedding_client: FakeEmbeddingClient,
    generator: FakeTextGenerator | None = None,
) -> DocumentIngestionService:
    synthesizer = None
    if generator is not None:
        synthesizer = ContextSynthesizer(
            ChunkAnnotator(generator, AnnotationOptions(generation_model_id="m", window_size=1)),
            FixedBatchScheduler(BatchConfig(batch_size=3, inter_batch_delay=0)),
        )
    return DocumentIngestionService(SqlVectorStore(engine), embedding_client, synthesizer)


def test_ingest_document_applies_default_metadata(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient())

    document_id = asyncio.run(service.ingest_document("plain text", {"source": "upload"}))

    document = service.get_document(document_id)
    assert document is not None
    assert document.content == "plain text"
    assert document.metadata["title"] == "Untitled Document"
    assert document.metadata["source"] == "upload"
    assert document.metadata["type"] == "text"
    assert "created_at" in document.metadata


def test_ingest_documents_embeds_once_and_keeps_order(engine: Engine) -> None:
    embedding_client = FakeEmbeddingClient()
    service = _service(engine, embedding_client)

    ids = asyncio.run(
        service.ingest_documents([("first", None), ("second", {"title": "Named"})])
    )

    assert len(ids) == 2
    assert embedding_client.requests == [["first", "second"]]
    first = service.get_document(ids[0])
    second = service.get_document(ids[1])
    assert first is not None and first.metadata["title"] == "Document 1"
    assert second is not None and second.metadata["title"] == "Named"


def test_contextual_ingestion_prepends_context_to_each_chunk(engine: Engine) -> None:
    embedding_client = FakeEmbeddingClient()
    service = _service(engine, embedding_client, FakeTextGenerator())
    content = " ".join(f"w{index}" for index in range(25))

    summary = asyncio.run(
        service.ingest_document_with_contextual_retrieval(
            content,
            {"title": "Words"},
            ContextualIngestOptions(chunk_size=10, overlap=3),
        )
    )

    assert summary.contextualized is True
    assert len(summary.chunk_ids) == 4
    embedded = [text for request in embedding_client.requests for text in request]
    assert embedded[0] == "Context for Chunk 1.\n\n" + " ".join(f"w{index}" for index in range(10))

    stored = service.get_document(summary.chunk_ids[1])
    assert stored is not None
    assert stored.content.startswith("Context for Chunk 2.\n\n")
    assert stored.metadata["parent_document_id"] == summary.document_id
    assert stored.metadata["chunk_index"] == 1
    assert stored.metadata["start_offset"] == 7
    assert stored.metadata["end_offset"] == 17
    assert stored.metadata["total_chunks"] == 4
    assert stored.metadata["context"] == "Context for Chunk 2."
    assert stored.metadata["original_content"] == " ".join(f"w{index}" for index in range(7, 17))
    assert stored.metadata["title"] == "Words"


def test_contextual_ingestion_by_characters(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient(), FakeTextGenerator())

    summary = asyncio.run(
        service.ingest_document_with_contextual_retrieval(
            "x" * 50,
            None,
            ContextualIngestOptions(chunk_size=20, overlap=0, by_characters=True),
        )
    )

    assert len(summary.chunk_ids) == 3


def test_contextual_ingestion_failure_stores_nothing(engine: Engine) -> None:
    embedding_client = FakeEmbeddingClient()
    service = _service(engine, embedding_client, FakeTextGenerator(fail_contexts=True))

    with pytest.raises(ContextualizationError):
        asyncio.run(
            service.ingest_document_with_contextual_retrieval(
                "one two three four five", None, ContextualIngestOptions(chunk_size=2, overlap=0)
            )
        )

    assert embedding_client.requests == []


def test_contextual_ingestion_can_fall_back_to_plain_chunks(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient(), FakeTextGenerator(fail_contexts=True))

    summary = asyncio.run(
        service.ingest_document_with_contextual_retrieval(
            "one two three four five",
            None,
            ContextualIngestOptions(chunk_size=2, overlap=0, fallback_to_plain_chunks=True),
        )
    )

    assert summary.contextualized is False
    stored = service.get_document(summary.chunk_ids[0])
    assert stored is not None
    assert stored.content == "one two"
    assert stored.metadata["context"] == ""


def test_contextual_ingestion_requires_synthesizer(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient())

    assert service.contextual_retrieval_enabled is False
    with pytest.raises(RuntimeError, match="not configured"):
        asyncio.run(service.ingest_document_with_contextual_retrieval("text"))


def test_delete_document(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient())
    document_id = asyncio.run(service.ingest_document("text"))

    service.delete_document(document_id)

    assert service.get_document(document_id) is None


def test_caller_metadata_overrides_defaults_even_when_blank(engine: Engine) -> None:
    service = _service(engine, FakeEmbeddingClient())

    document_id = asyncio.run(
        service.ingest_document("text", {"title": "", "type": "md", "created_at": "2026-01-01"})
    )

    document = service.get_document(document_id)
    assert document is not None
    assert document.metadata["title"] == ""
    assert document.metadata["source"] == "unknown"
    assert document.metadata["type"] == "md"
    assert document.metadata["created_at"] == "2026-01-01"


class ThreadRecordingStore(SqlVectorStore):
    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)
        self.threads: list[int] = []

    def add_document(self, document: StoredDocument, embedding: list[float]) -> None:
        self.threads.append(threading.get_ident())
        super().add_document(document, embedding)


def test_store_writes_run_off_the_event_loop_thread(engine: Engine) -> None:
    store = ThreadRecordingStore(engine)
    synthesizer = ContextSynthesizer(
        ChunkAnnotator(FakeTextGenerator(), AnnotationOptions(generation_model_id="m")),
        FixedBatchScheduler(BatchConfig(batch_size=3, inter_batch_delay=0)),
    )
    service = DocumentIngestionService(store, FakeEmbeddingClient(), synthesizer)

    async def scenario() -> int:
        await service.ingest_document("plain")
        await service.ingest_documents([("first", None), ("second", None)])
        await service.ingest_document_with_contextual_retrieval(
            "one two three four", None, ContextualIngestOptions(chunk_size=2, overlap=0)
        )
        return threading.get_ident()

    loop_thread = asyncio.run(scenario())

    assert len(store.threads) == 5
    assert loop_thread not in store.threads
