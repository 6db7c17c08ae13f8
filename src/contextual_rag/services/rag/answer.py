from __future__ import annotations

from typing import AsyncIterator

from contextual_rag.llm import LLMClientError, StreamingTextGenerator
from contextual_rag.services.rag.retrieval import RetrievalService
from contextual_rag.services.rag.types import RAGQuery, RAGResponse, SearchResult

NO_CONTEXT_ANSWER = "I couldn't find any relevant information to answer your question."

ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the provided context. "
    "Use only the information from the context to answer questions. If the context "
    "doesn't contain enough information to answer the question, say so. Be concise "
    "and accurate."
)

ANSWER_MAX_OUTPUT_TOKENS = 1000
ANSWER_TEMPERATURE = 0.7


def build_answer_prompt(question: str, results: list[SearchResult]) -> str:
    context = "\n\n".join(result.document.content for result in results)
    return f"Context:\n{context}\n\nQuestion: {question}"


class RAGService:
    def __init__(
        self,
        retrieval: RetrievalService,
        generator: StreamingTextGenerator,
        *,
        model: str,
        fallback_model: str = "",
    ) -> None:
        self._retrieval = retrieval
        self._generator = generator
        self._model = model
        self._fallback_model = fallback_model

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._model, False)]
        if self._fallback_model and self._fallback_model != self._model:
            candidates.append((self._fallback_model, True))
        return candidates

    async def query(self, query: RAGQuery) -> RAGResponse:
        results = await self._retrieval.search(query)
        if not results:
            return RAGResponse(answer=NO_CONTEXT_ANSWER, sources=[], query=query.query)

        prompt = build_answer_prompt(query.query, results)
        candidates = self._model_candidates()
        for model, used_fallback in candidates:
            try:
                answer = await self._generator.generate(
                    system_prompt=ANSWER_SYSTEM_PROMPT,
                    user_prompt=prompt,
                    model=model,
                    max_output_tokens=ANSWER_MAX_OUTPUT_TOKENS,
                    temperature=ANSWER_TEMPERATURE,
                )
            except LLMClientError:
                if (model, used_fallback) == candidates[-1]:
                    raise
                continue

            return RAGResponse(
                answer=answer or "No answer generated.",
                sources=results,
                query=query.query,
                model=model,
                used_fallback=used_fallback,
            )

        raise LLMClientError("No model candidates configured")

    async def query_stream(self, query: RAGQuery) -> AsyncIterator[str]:
        results = await self._retrieval.search(query)
        if not results:
            yield NO_CONTEXT_ANSWER
            return

        prompt = build_answer_prompt(query.query, results)
        candidates = self._model_candidates()
        for model, used_fallback in candidates:
            stream = self._generator.stream(
                system_prompt=ANSWER_SYSTEM_PROMPT,
                user_prompt=prompt,
                model=model,
                max_output_tokens=ANSWER_MAX_OUTPUT_TOKENS,
                temperature=ANSWER_TEMPERATURE,
            )
            # fall back only before the first delta
            try:
                first = await anext(stream)
            except StopAsyncIteration:
                return
            except LLMClientError:
                if (model, used_fallback) == candidates[-1]:
                    raise
                continue

            yield first
            async for delta in stream:
                yield delta
            return
