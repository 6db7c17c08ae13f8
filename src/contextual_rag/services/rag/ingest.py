from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Mapping, Sequence
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from contextual_rag.services.rag.annotator import ContextualizationError
from contextual_rag.services.rag.batching import BatchScheduler, FixedBatchScheduler
from contextual_rag.services.rag.chunker import window_characters, window_words
from contextual_rag.services.rag.embedding_client import EmbeddingClient
from contextual_rag.services.rag.synthesizer import ContextSynthesizer
from contextual_rag.services.rag.types import (
    BatchConfig,
    Chunk,
    ContextualIngestionSummary,
    ContextualIngestOptions,
    StoredDocument,
)
from contextual_rag.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

EMBEDDING_REQUEST_SIZE = 64


def _document_metadata(
    metadata: Mapping[str, Any] | None,
    *,
    default_title: str,
    created_at: datetime,
) -> dict[str, Any]:
    resolved: dict[str, Any] = {
        "title": default_title,
        "source": "unknown",
        "type": "text",
        "created_at": created_at.isoformat(),
    }
    resolved.update(metadata or {})
    return resolved


def compose_chunk_text(context: str, chunk: Chunk) -> str:
    if not context:
        return chunk.content
    return f"{context}\n\n{chunk.content}"


class DocumentIngestionService:
    def __init__(
        self,
        vector_store: VectorStore,
        embedding_client: EmbeddingClient,
        synthesizer: ContextSynthesizer | None = None,
        embedding_scheduler: BatchScheduler | None = None,
    ) -> None:
        self._vector_store = vector_store
        self._embedding_client = embedding_client
        self._synthesizer = synthesizer
        self._embedding_scheduler = embedding_scheduler or FixedBatchScheduler(
            BatchConfig(batch_size=4, inter_batch_delay=0.0)
        )

    @property
    def contextual_retrieval_enabled(self) -> bool:
        return self._synthesizer is not None

    async def ingest_document(
        self,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        created_at = datetime.now(timezone.utc)
        document = StoredDocument(
            id=str(uuid4()),
            content=content,
            metadata=_document_metadata(
                metadata, default_title="Untitled Document", created_at=created_at
            ),
            created_at=created_at,
        )

        embedding = (await self._embedding_client.embed_texts([content]))[0]
        await run_in_threadpool(self._vector_store.add_document, document, embedding)

        logger.info("Successfully ingested document: %s", document.id)
        return document.id

    async def ingest_documents(
        self,
        documents: Sequence[tuple[str, Mapping[str, Any] | None]],
    ) -> list[str]:
        if not documents:
            return []

        created_at = datetime.now(timezone.utc)
        embeddings = await self._embed([content for content, _ in documents])

        stored: list[tuple[StoredDocument, list[float]]] = []
        for index, ((content, metadata), embedding) in enumerate(zip(documents, embeddings)):
            document = StoredDocument(
                id=str(uuid4()),
                content=content,
                metadata=_document_metadata(
                    metadata, default_title=f"Document {index + 1}", created_at=created_at
                ),
                created_at=created_at,
            )
            stored.append((document, embedding))
        await run_in_threadpool(self._add_documents, stored)

        logger.info("Successfully ingested %d documents", len(stored))
        return [document.id for document, _ in stored]

    async def ingest_document_with_contextual_retrieval(
        self,
        content: str,
        metadata: Mapping[str, Any] | None = None,
        options: ContextualIngestOptions | None = None,
    ) -> ContextualIngestionSummary:
        if self._synthesizer is None:
            raise RuntimeError("Contextual retrieval is not configured")

        options = options or ContextualIngestOptions()
        if options.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        if options.overlap < 0:
            raise ValueError("overlap must be >= 0")

        created_at = datetime.now(timezone.utc)
        document_id = str(uuid4())
        document_metadata = _document_metadata(
            metadata, default_title="Untitled Document", created_at=created_at
        )

        if options.by_characters:
            chunks = window_characters(content, options.chunk_size, options.overlap)
        else:
            chunks = window_words(content, options.chunk_size, options.overlap)
        logger.info("Split document %s into %d chunks", document_id, len(chunks))

        contextualized = True
        try:
            contexts = await self._synthesizer.synthesize(chunks, document_metadata)
        except ContextualizationError:
            if not options.fallback_to_plain_chunks:
                raise
            logger.warning(
                "Contextualization failed for document %s, storing plain chunks", document_id
            )
            contexts = [""] * len(chunks)
            contextualized = False

        texts = [compose_chunk_text(context, chunk) for context, chunk in zip(contexts, chunks)]
        embeddings = await self._embed(texts)

        stored: list[tuple[StoredDocument, list[float]]] = []
        for chunk, context, text, embedding in zip(chunks, contexts, texts, embeddings):
            chunk_document = StoredDocument(
                id=str(uuid4()),
                content=text,
                metadata={
                    **document_metadata,
                    "parent_document_id": document_id,
                    "chunk_index": chunk.chunk_index,
                    "start_offset": chunk.start_offset,
                    "end_offset": chunk.end_offset,
                    "total_chunks": len(chunks),
                    "context": context,
                    "original_content": chunk.content,
                    "contextualized": contextualized,
                },
                created_at=created_at,
            )
            stored.append((chunk_document, embedding))
        await run_in_threadpool(self._add_documents, stored)
        chunk_ids = [chunk_document.id for chunk_document, _ in stored]

        logger.info(
            "Successfully ingested document %s as %d contextual chunks", document_id, len(chunk_ids)
        )
        return ContextualIngestionSummary(
            document_id=document_id,
            chunk_ids=chunk_ids,
            contextualized=contextualized,
        )

    def delete_document(self, document_id: str) -> None:
        self._vector_store.delete_document(document_id)
        logger.info("Successfully deleted document: %s", document_id)

    def get_document(self, document_id: str) -> StoredDocument | None:
        return self._vector_store.get_document(document_id)

    def _add_documents(self, stored: Sequence[tuple[StoredDocument, list[float]]]) -> None:
        for document, embedding in stored:
            self._vector_store.add_document(document, embedding)

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        requests = [
            texts[start : start + EMBEDDING_REQUEST_SIZE]
            for start in range(0, len(texts), EMBEDDING_REQUEST_SIZE)
        ]
        responses = await self._embedding_scheduler.run(requests, self._embedding_client.embed_texts)
        embeddings = [vector for response in responses for vector in response]
        if len(embeddings) != len(texts):
            raise ValueError("texts and embeddings must have the same length")
        return embeddings
