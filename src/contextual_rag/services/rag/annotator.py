from __future__ import annotations

import logging
from typing import Sequence

from contextual_rag.llm import LLMClientError, TextGenerator
from contextual_rag.services.rag.types import AnnotationOptions, DocumentMetadata

logger = logging.getLogger(__name__)

# Summaries feed the sliding window of later prompts; keep them shorter than contexts.
SUMMARY_MAX_OUTPUT_TOKENS = 60

SUMMARY_SYSTEM_PROMPT = (
    "You summarize document excerpts. Reply with one concise sentence naming the "
    "main topics and entities of the excerpt and nothing else."
)

CONTEXT_SYSTEM_PROMPT = (
    "You are an expert at providing concise, relevant context for document chunks "
    "to improve retrieval accuracy. Provide only the context, no explanations or "
    "additional text."
)


class ContextualizationError(RuntimeError):
    pass


def describe_document(metadata: DocumentMetadata) -> str:
    parts: list[str] = []
    title = metadata.get("title")
    if title:
        parts.append(f'"{title}"')
    doc_type = metadata.get("type")
    if doc_type:
        parts.append(f"type: {doc_type}")
    source = metadata.get("source")
    if source:
        parts.append(f"source: {source}")

    if not parts:
        return "Document"
    return "Document " + ", ".join(parts)


def summary_window(
    prior_summaries: Sequence[str], *, chunk_index: int, window_size: int
) -> list[str]:
    start = max(0, chunk_index - window_size)
    return list(prior_summaries[start:chunk_index])


def build_summary_prompt(chunk_text: str) -> str:
    return (
        f"<excerpt>\n{chunk_text}\n</excerpt>\n\n"
        "Summarize this excerpt in a single sentence."
    )


def build_context_prompt(
    chunk_text: str,
    *,
    chunk_index: int,
    preceding_summaries: Sequence[str],
    metadata: DocumentMetadata,
) -> str:
    lines = [describe_document(metadata), f"Chunk {chunk_index + 1}", ""]

    if preceding_summaries:
        first_index = chunk_index - len(preceding_summaries)
        lines.append("Summaries of the preceding chunks:")
        for offset, summary in enumerate(preceding_summaries):
            lines.append(f"- Chunk {first_index + offset + 1}: {summary or '(no summary)'}")
    else:
        lines.append("This is the first chunk shown from the document.")

    lines.extend(
        [
            "",
            "Here is the chunk we want to situate within the document:",
            f"<chunk>\n{chunk_text}\n</chunk>",
            "",
            "Please give a short succinct context of one or two sentences to situate "
            "this chunk within the overall document for the purposes of improving "
            "search retrieval of the chunk. Answer only with the succinct context and "
            "nothing else.",
        ]
    )
    return "\n".join(lines)


class ChunkAnnotator:
    """Generates per-chunk summaries and situating contexts.

    ``summarize`` swallows generation failures and returns an empty summary,
    ``contextualize`` raises :class:`ContextualizationError`. Both behaviours can
    be flipped with ``suppress_summary_errors`` / ``suppress_context_errors``.
    """

    def __init__(
        self,
        generator: TextGenerator,
        options: AnnotationOptions,
        *,
        suppress_summary_errors: bool = True,
        suppress_context_errors: bool = False,
    ) -> None:
        self._generator = generator
        self._options = options
        self._suppress_summary_errors = suppress_summary_errors
        self._suppress_context_errors = suppress_context_errors

    @property
    def options(self) -> AnnotationOptions:
        return self._options

    async def summarize(self, chunk_text: str) -> str:
        try:
            summary = await self._generator.generate(
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                user_prompt=build_summary_prompt(chunk_text),
                model=self._options.generation_model_id,
                max_output_tokens=SUMMARY_MAX_OUTPUT_TOKENS,
                temperature=self._options.temperature,
            )
        except LLMClientError as exc:
            if not self._suppress_summary_errors:
                raise
            logger.warning("Chunk summary failed, continuing without it: %s", exc)
            return ""
        return summary.strip()

    async def contextualize(
        self,
        chunk_text: str,
        chunk_index: int,
        prior_summaries: Sequence[str],
        document_metadata: DocumentMetadata,
    ) -> str:
        prompt = build_context_prompt(
            chunk_text,
            chunk_index=chunk_index,
            preceding_summaries=summary_window(
                prior_summaries,
                chunk_index=chunk_index,
                window_size=self._options.window_size,
            ),
            metadata=document_metadata,
        )

        try:
            context = await self._generator.generate(
                system_prompt=CONTEXT_SYSTEM_PROMPT,
                user_prompt=prompt,
                model=self._options.generation_model_id,
                max_output_tokens=self._options.max_output_tokens,
                temperature=self._options.temperature,
            )
        except LLMClientError as exc:
            if self._suppress_context_errors:
                logger.warning("Context generation failed for chunk %d: %s", chunk_index, exc)
                return ""
            raise ContextualizationError(
                f"Failed to generate context for chunk {chunk_index}: {exc}"
            ) from exc
        return context.strip()
