from __future__ import annotations

from fastapi.concurrency import run_in_threadpool

from contextual_rag.services.rag.embedding_client import EmbeddingClient, EmbeddingClientError
from contextual_rag.services.rag.types import RAGQuery, SearchResult
from contextual_rag.services.rag.vector_store import VectorStore

DEFAULT_LIMIT = 5
DEFAULT_THRESHOLD = 0.7
DEFAULT_ALPHA = 0.5


class RetrievalService:
    def __init__(
        self,
        vector_store: VectorStore,
        embedding_client: EmbeddingClient,
        *,
        default_limit: int = DEFAULT_LIMIT,
        default_threshold: float = DEFAULT_THRESHOLD,
        alpha: float = DEFAULT_ALPHA,
    ) -> None:
        self._vector_store = vector_store
        self._embedding_client = embedding_client
        self._default_limit = default_limit
        self._default_threshold = default_threshold
        self._alpha = alpha

    async def search(self, query: RAGQuery) -> list[SearchResult]:
        normalized_query = query.query.strip()
        if not normalized_query:
            raise ValueError("query must not be empty")

        try:
            query_embedding = (await self._embedding_client.embed_texts([normalized_query]))[0]
        except IndexError as exc:
            raise EmbeddingClientError("Failed to generate query embedding") from exc

        return await run_in_threadpool(
            self._vector_store.search_similar,
            query_embedding,
            query.limit or self._default_limit,
            self._default_threshold if query.threshold is None else query.threshold,
            normalized_query,
            self._alpha,
        )

    async def search_with_context(
        self, query: str, context_limit: int = 3
    ) -> tuple[list[SearchResult], str]:
        results = await self.search(
            RAGQuery(query=query, limit=context_limit, threshold=self._default_threshold)
        )
        context = "\n\n".join(result.document.content for result in results)
        return results, context
