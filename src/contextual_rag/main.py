from datetime import datetime, timezone
import logging
from typing import Annotated, Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from contextual_rag.config import get_settings
from contextual_rag.db import Base, get_engine
from contextual_rag.llm import LLMClientError, OpenAIChatClient, StreamingTextGenerator
from contextual_rag.services.rag.annotator import ChunkAnnotator, ContextualizationError
from contextual_rag.services.rag.answer import RAGService
from contextual_rag.services.rag.batching import FixedBatchScheduler
from contextual_rag.services.rag.embedding_client import (
    EmbeddingClient,
    EmbeddingClientError,
    OpenAIEmbeddingClient,
)
from contextual_rag.services.rag.ingest import DocumentIngestionService
from contextual_rag.services.rag.retrieval import RetrievalService
from contextual_rag.services.rag.synthesizer import ContextSynthesizer
from contextual_rag.services.rag.types import (
    ContextualIngestOptions,
    RAGQuery,
    SearchResult,
    StoredDocument,
)
from contextual_rag.services.rag.vector_store import SqlVectorStore, VectorStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Contextual RAG API", version="0.1.0")


class DocumentMetadataModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str | None = None
    source: str | None = None
    type: str | None = None


class DocumentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(min_length=1)
    metadata: DocumentMetadataModel | None = None


class BatchDocumentsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    documents: list[DocumentRequest]


class ContextualOptionsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_size: int | None = Field(default=None, ge=1)
    overlap: int | None = Field(default=None, ge=0)
    by_characters: bool = False
    fallback_to_plain_chunks: bool = False


class ContextualDocumentRequest(DocumentRequest):
    options: ContextualOptionsModel | None = None


class SearchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=50)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=get_engine())


def get_text_generator() -> StreamingTextGenerator:
    settings = get_settings()
    return OpenAIChatClient(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )


def get_embedding_client() -> EmbeddingClient:
    settings = get_settings()
    return OpenAIEmbeddingClient(
        base_url=settings.embedding_base_url,
        model=settings.embedding_model,
        api_key=settings.llm_api_key,
        timeout_seconds=settings.llm_timeout_seconds,
    )


def get_vector_store() -> VectorStore:
    return SqlVectorStore(get_engine())


def get_ingestion_service(
    vector_store: Annotated[VectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    generator: Annotated[StreamingTextGenerator, Depends(get_text_generator)],
) -> DocumentIngestionService:
    settings = get_settings()
    synthesizer = None
    if settings.enable_contextual_retrieval:
        synthesizer = ContextSynthesizer(
            ChunkAnnotator(generator, settings.annotation_options()),
            FixedBatchScheduler(settings.batch_config()),
        )
    return DocumentIngestionService(vector_store, embedding_client, synthesizer)


def get_retrieval_service(
    vector_store: Annotated[VectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
) -> RetrievalService:
    settings = get_settings()
    return RetrievalService(
        vector_store,
        embedding_client,
        default_limit=settings.rag_search_limit,
        default_threshold=settings.rag_search_threshold,
        alpha=settings.rag_search_alpha,
    )


def get_rag_service(
    retrieval: Annotated[RetrievalService, Depends(get_retrieval_service)],
    generator: Annotated[StreamingTextGenerator, Depends(get_text_generator)],
) -> RAGService:
    settings = get_settings()
    return RAGService(
        retrieval,
        generator,
        model=settings.answer_model,
        fallback_model=settings.answer_fallback_model,
    )


def _metadata_dict(metadata: DocumentMetadataModel | None) -> dict[str, Any]:
    if metadata is None:
        return {}
    return metadata.model_dump(exclude_none=True)


def _document_payload(document: StoredDocument) -> dict[str, Any]:
    return {
        "id": document.id,
        "content": document.content,
        "metadata": document.metadata,
        "created_at": document.created_at.isoformat() if document.created_at else None,
    }


def _result_payload(result: SearchResult) -> dict[str, Any]:
    return {
        "document": _document_payload(result.document),
        "score": round(result.score, 6),
    }


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/documents")
async def create_document(
    request: DocumentRequest,
    ingestion: Annotated[DocumentIngestionService, Depends(get_ingestion_service)],
) -> dict[str, str]:
    try:
        document_id = await ingestion.ingest_document(
            request.content, _metadata_dict(request.metadata)
        )
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc

    return {"id": document_id, "message": "Document ingested successfully"}


@app.post("/documents/batch")
async def create_documents(
    request: BatchDocumentsRequest,
    ingestion: Annotated[DocumentIngestionService, Depends(get_ingestion_service)],
) -> dict[str, Any]:
    try:
        document_ids = await ingestion.ingest_documents(
            [(document.content, _metadata_dict(document.metadata)) for document in request.documents]
        )
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc

    return {
        "ids": document_ids,
        "message": f"{len(document_ids)} documents ingested successfully",
    }


@app.post("/documents/contextual")
async def create_contextual_document(
    request: ContextualDocumentRequest,
    ingestion: Annotated[DocumentIngestionService, Depends(get_ingestion_service)],
) -> dict[str, Any]:
    if not ingestion.contextual_retrieval_enabled:
        raise HTTPException(
            status_code=400,
            detail=(
                "Contextual retrieval not enabled. "
                "Set ENABLE_CONTEXTUAL_RETRIEVAL=true in environment"
            ),
        )

    settings = get_settings()
    requested = request.options or ContextualOptionsModel()
    chunk_size = requested.chunk_size or settings.rag_chunk_size
    overlap = settings.rag_chunk_overlap if requested.overlap is None else requested.overlap
    options = ContextualIngestOptions(
        chunk_size=chunk_size,
        overlap=overlap,
        by_characters=requested.by_characters,
        fallback_to_plain_chunks=requested.fallback_to_plain_chunks,
    )

    try:
        summary = await ingestion.ingest_document_with_contextual_retrieval(
            request.content,
            _metadata_dict(request.metadata),
            options,
        )
    except ContextualizationError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Contextualization failed for this document: {exc}",
        ) from exc
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc

    return {
        "document_id": summary.document_id,
        "chunk_ids": summary.chunk_ids,
        "chunk_count": len(summary.chunk_ids),
        "contextualized": summary.contextualized,
        "message": "Document ingested with contextual retrieval successfully",
    }


@app.get("/documents/{document_id}")
def get_document(
    document_id: str,
    ingestion: Annotated[DocumentIngestionService, Depends(get_ingestion_service)],
) -> dict[str, Any]:
    document = ingestion.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return _document_payload(document)


@app.delete("/documents/{document_id}")
def delete_document(
    document_id: str,
    ingestion: Annotated[DocumentIngestionService, Depends(get_ingestion_service)],
) -> dict[str, str]:
    ingestion.delete_document(document_id)
    return {"message": "Document deleted successfully"}


@app.post("/search")
async def search(
    request: SearchRequest,
    retrieval: Annotated[RetrievalService, Depends(get_retrieval_service)],
) -> dict[str, Any]:
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="query must not be empty")

    try:
        results = await retrieval.search(
            RAGQuery(query=query, limit=request.limit, threshold=request.threshold)
        )
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc

    return {"results": [_result_payload(result) for result in results], "query": query}


@app.post("/query")
async def query(
    request: SearchRequest,
    rag: Annotated[RAGService, Depends(get_rag_service)],
) -> dict[str, Any]:
    question = request.query.strip()
    if not question:
        raise HTTPException(status_code=400, detail="query must not be empty")

    try:
        response = await rag.query(
            RAGQuery(query=question, limit=request.limit, threshold=request.threshold)
        )
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return {
        "answer": response.answer,
        "sources": [_result_payload(result) for result in response.sources],
        "query": response.query,
        "meta": {
            "model": response.model,
            "used_fallback": response.used_fallback,
            "retrieved_count": len(response.sources),
        },
    }


@app.post("/query/stream")
async def query_stream(
    request: SearchRequest,
    rag: Annotated[RAGService, Depends(get_rag_service)],
) -> StreamingResponse:
    question = request.query.strip()
    if not question:
        raise HTTPException(status_code=400, detail="query must not be empty")

    stream = rag.query_stream(
        RAGQuery(query=question, limit=request.limit, threshold=request.threshold)
    )
    try:
        first = await anext(stream, None)
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    async def body() -> AsyncIterator[str]:
        if first is None:
            return
        yield first
        # headers are already sent here
        try:
            async for delta in stream:
                yield delta
        except LLMClientError:
            logger.exception("Answer stream failed after the response started")

    return StreamingResponse(body(), media_type="text/plain")


def run() -> None:
    import uvicorn

    uvicorn.run("contextual_rag.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
