from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

DocumentMetadata = Mapping[str, Any]


@dataclass(frozen=True)
class Chunk:
    content: str
    chunk_index: int
    start_offset: int
    end_offset: int


@dataclass(frozen=True)
class AnnotationOptions:
    generation_model_id: str
    max_output_tokens: int = 100
    temperature: float = 0.3
    window_size: int = 1

    def __post_init__(self) -> None:
        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be > 0")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be within [0, 2]")
        if self.window_size < 0:
            raise ValueError("window_size must be >= 0")


@dataclass(frozen=True)
class BatchConfig:
    batch_size: int = 10
    inter_batch_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.inter_batch_delay < 0:
            raise ValueError("inter_batch_delay must be >= 0")


@dataclass(frozen=True)
class StoredDocument:
    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class SearchResult:
    document: StoredDocument
    score: float


@dataclass(frozen=True)
class RAGQuery:
    query: str
    limit: int | None = None
    threshold: float | None = None


@dataclass(frozen=True)
class RAGResponse:
    answer: str
    sources: list[SearchResult]
    query: str
    model: str | None = None
    used_fallback: bool = False


@dataclass(frozen=True)
class ContextualIngestOptions:
    chunk_size: int = 800
    overlap: int = 100
    by_characters: bool = False
    fallback_to_plain_chunks: bool = False


@dataclass(frozen=True)
class ContextualIngestionSummary:
    document_id: str
    chunk_ids: list[str]
    contextualized: bool
