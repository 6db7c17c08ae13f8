from __future__ import annotations

from array import array
from datetime import datetime, timezone
import math
import re
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from contextual_rag.models import DocumentRecord
from contextual_rag.services.rag.types import SearchResult, StoredDocument

_WORD_RE = re.compile(r"\w+")


class VectorStore(Protocol):
    def add_document(self, document: StoredDocument, embedding: list[float]) -> None: ...

    def search_similar(
        self,
        query_embedding: list[float],
        limit: int,
        threshold: float = 0.7,
        query_text: str | None = None,
        alpha: float = 0.5,
    ) -> list[SearchResult]: ...

    def delete_document(self, document_id: str) -> None: ...

    def get_document(self, document_id: str) -> StoredDocument | None: ...


def _encode_embedding(values: list[float]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _terms(text: str) -> set[str]:
    return {term.lower() for term in _WORD_RE.findall(text)}


def _keyword_score(query_terms: set[str], content: str) -> float:
    if not query_terms:
        return 0.0
    return len(query_terms & _terms(content)) / len(query_terms)


def _to_document(record: DocumentRecord) -> StoredDocument:
    metadata: dict[str, Any] = dict(record.metadata_json or {})
    metadata.setdefault("title", record.title)
    metadata.setdefault("source", record.source)
    metadata.setdefault("type", record.type)
    return StoredDocument(
        id=record.id,
        content=record.content,
        metadata=metadata,
        created_at=record.created_at,
    )


class SqlVectorStore:
    """Stores documents with their embeddings and ranks them in process.

    With a query text the score is ``alpha * cosine + (1 - alpha) * keyword``,
    where keyword is the share of query terms found in the document. ``alpha``
    of 1 is a pure vector search, 0 a pure keyword search.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def add_document(self, document: StoredDocument, embedding: list[float]) -> None:
        if not embedding:
            raise ValueError("embedding must not be empty")

        metadata = dict(document.metadata)
        record = DocumentRecord(
            id=document.id,
            content=document.content,
            title=str(metadata.get("title") or ""),
            source=str(metadata.get("source") or ""),
            type=str(metadata.get("type") or ""),
            metadata_json=metadata,
            embedding=_encode_embedding(embedding),
            embedding_dim=len(embedding),
            created_at=document.created_at or datetime.now(timezone.utc),
        )
        with Session(self._engine) as session:
            session.add(record)
            session.commit()

    def search_similar(
        self,
        query_embedding: list[float],
        limit: int,
        threshold: float = 0.7,
        query_text: str | None = None,
        alpha: float = 0.5,
    ) -> list[SearchResult]:
        if not 0.0 <= alpha <= 1.0:
            raise ValueError("alpha must be within [0, 1]")

        query_terms = _terms(query_text) if query_text else set()
        with Session(self._engine) as session:
            records = session.scalars(select(DocumentRecord)).all()

        results: list[SearchResult] = []
        for record in records:
            embedding = _decode_embedding(record.embedding)
            if len(embedding) != record.embedding_dim:
                continue

            score = _cosine(query_embedding, embedding)
            if query_terms:
                score = alpha * score + (1.0 - alpha) * _keyword_score(query_terms, record.content)
            if score < threshold:
                continue
            results.append(SearchResult(document=_to_document(record), score=score))

        results.sort(key=lambda result: result.score, reverse=True)
        return results[:limit]

    def delete_document(self, document_id: str) -> None:
        with Session(self._engine) as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return
            session.delete(record)
            session.commit()

    def get_document(self, document_id: str) -> StoredDocument | None:
        with Session(self._engine) as session:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return None
            return _to_document(record)
