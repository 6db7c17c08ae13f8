from __future__ import annotations

import logging
from typing import Sequence

from contextual_rag.llm import TextGenerator
from contextual_rag.services.rag.annotator import ChunkAnnotator, ContextualizationError
from contextual_rag.services.rag.batching import BatchScheduler, FixedBatchScheduler
from contextual_rag.services.rag.types import (
    AnnotationOptions,
    BatchConfig,
    Chunk,
    DocumentMetadata,
)

logger = logging.getLogger(__name__)


class ContextSynthesizer:
    """Builds a situating context for every chunk of a document in two passes.

    Pass one summarizes each chunk. Pass two starts only once every summary is
    in, and asks for each chunk's context given the summaries of the chunks
    just before it. Prompts therefore grow with ``window_size`` and not with
    the chunk size.

    A failed summary leaves an empty slot; a failed context fails the whole
    document with :class:`ContextualizationError`.
    """

    def __init__(self, annotator: ChunkAnnotator, scheduler: BatchScheduler) -> None:
        self._annotator = annotator
        self._scheduler = scheduler

    async def synthesize(
        self,
        chunks: Sequence[Chunk],
        document_metadata: DocumentMetadata,
    ) -> list[str]:
        if not chunks:
            return []

        logger.info("Summarizing %d chunks", len(chunks))
        summaries = await self._scheduler.run(
            chunks,
            lambda chunk: self._annotator.summarize(chunk.content),
        )
        failed = sum(1 for summary in summaries if not summary)
        if failed:
            logger.info("%d of %d chunk summaries are empty", failed, len(chunks))

        logger.info("Generating contexts for %d chunks", len(chunks))
        try:
            contexts = await self._scheduler.run(
                chunks,
                lambda chunk: self._annotator.contextualize(
                    chunk.content,
                    chunk.chunk_index,
                    summaries,
                    document_metadata,
                ),
            )
        except ContextualizationError:
            logger.error("Contextualization failed for document with %d chunks", len(chunks))
            raise

        logger.info("Successfully generated %d contexts", len(contexts))
        return contexts


async def synthesize_contexts(
    chunks: Sequence[Chunk],
    document_metadata: DocumentMetadata,
    options: AnnotationOptions,
    batch_config: BatchConfig,
    *,
    generator: TextGenerator,
) -> list[str]:
    synthesizer = ContextSynthesizer(
        ChunkAnnotator(generator, options),
        FixedBatchScheduler(batch_config),
    )
    return await synthesizer.synthesize(chunks, document_metadata)
