from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys

from contextual_rag.config import Settings, get_settings
from contextual_rag.db import Base, get_engine
from contextual_rag.llm import OpenAIChatClient
from contextual_rag.services.rag.annotator import ChunkAnnotator
from contextual_rag.services.rag.batching import FixedBatchScheduler
from contextual_rag.services.rag.embedding_client import OpenAIEmbeddingClient
from contextual_rag.services.rag.ingest import DocumentIngestionService
from contextual_rag.services.rag.synthesizer import ContextSynthesizer
from contextual_rag.services.rag.types import ContextualIngestionSummary, ContextualIngestOptions
from contextual_rag.services.rag.vector_store import SqlVectorStore


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="contextual-rag-ingest",
        description="Chunk a text file, annotate every chunk with context and store it",
    )
    parser.add_argument("path", help="Text or markdown file to ingest")
    parser.add_argument("--title", default=None, help="Document title (defaults to the file name)")
    parser.add_argument("--source", default=None, help="Document source (defaults to the file path)")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.rag_chunk_size,
        help="Chunk size in words (characters with --by-characters)",
    )
    parser.add_argument(
        "--overlap",
        type=int,
        default=settings.rag_chunk_overlap,
        help="Overlap between consecutive chunks, same unit as --chunk-size",
    )
    parser.add_argument(
        "--by-characters",
        action="store_true",
        help="Window by characters instead of words",
    )
    parser.add_argument(
        "--fallback-to-plain-chunks",
        action="store_true",
        help="Store chunks without context if contextualization fails",
    )
    return parser


def _build_service(settings: Settings) -> DocumentIngestionService:
    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    generator = OpenAIChatClient(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    embedding_client = OpenAIEmbeddingClient(
        base_url=settings.embedding_base_url,
        model=settings.embedding_model,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    synthesizer = ContextSynthesizer(
        ChunkAnnotator(generator, settings.annotation_options()),
        FixedBatchScheduler(settings.batch_config()),
    )
    return DocumentIngestionService(SqlVectorStore(engine), embedding_client, synthesizer)


def ingest_file(
    path: Path,
    *,
    service: DocumentIngestionService,
    options: ContextualIngestOptions,
    title: str | None = None,
    source: str | None = None,
) -> ContextualIngestionSummary:
    content = path.read_text(encoding="utf-8")
    metadata = {
        "title": title or path.stem,
        "source": source or path.as_posix(),
        "type": path.suffix.lstrip(".").lower() or "text",
    }
    return asyncio.run(
        service.ingest_document_with_contextual_retrieval(content, metadata, options)
    )


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.chunk_size <= 0:
        parser.error("--chunk-size must be > 0")
    if args.overlap < 0:
        parser.error("--overlap must be >= 0")

    try:
        summary = ingest_file(
            Path(args.path),
            service=_build_service(settings),
            options=ContextualIngestOptions(
                chunk_size=args.chunk_size,
                overlap=args.overlap,
                by_characters=args.by_characters,
                fallback_to_plain_chunks=args.fallback_to_plain_chunks,
            ),
            title=args.title,
            source=args.source,
        )
    except Exception as exc:
        print(f"[contextual-rag-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[contextual-rag-ingest] completed "
        f"document_id={summary.document_id} "
        f"chunks={len(summary.chunk_ids)} "
        f"contextualized={str(summary.contextualized).lower()}",
        flush=True,
    )


if __name__ == "__main__":
    main()
