from dataclasses import dataclass
from functools import lru_cache
import os

from contextual_rag.services.rag.types import AnnotationOptions, BatchConfig


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float, maximum: float | None = None) -> float:
    if value is None:
        return default
    parsed = max(minimum, float(value))
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    log_level: str
    llm_base_url: str
    llm_api_key: str
    llm_timeout_seconds: float
    answer_model: str
    answer_fallback_model: str
    embedding_base_url: str
    embedding_model: str
    enable_contextual_retrieval: bool
    context_model: str
    context_max_tokens: int
    context_temperature: float
    context_window_size: int
    context_batch_size: int
    context_batch_delay_seconds: float
    rag_chunk_size: int
    rag_chunk_overlap: int
    rag_search_limit: int
    rag_search_threshold: float
    rag_search_alpha: float

    def annotation_options(self) -> AnnotationOptions:
        return AnnotationOptions(
            generation_model_id=self.context_model,
            max_output_tokens=self.context_max_tokens,
            temperature=self.context_temperature,
            window_size=self.context_window_size,
        )

    def batch_config(self) -> BatchConfig:
        return BatchConfig(
            batch_size=self.context_batch_size,
            inter_batch_delay=self.context_batch_delay_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    llm_base_url = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    return Settings(
        database_url=os.getenv(
            "API_DATABASE_URL",
            "sqlite+pysqlite:///./data/contextual_rag.db",
        ),
        db_echo=_to_bool(os.getenv("API_DB_ECHO"), default=False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        llm_base_url=llm_base_url,
        llm_api_key=os.getenv("LLM_API_KEY", "").strip(),
        llm_timeout_seconds=_to_float(os.getenv("LLM_TIMEOUT_SECONDS"), default=30.0, minimum=1.0),
        answer_model=os.getenv("ANSWER_MODEL", "gpt-3.5-turbo"),
        answer_fallback_model=os.getenv("ANSWER_FALLBACK_MODEL", ""),
        embedding_base_url=os.getenv("EMBEDDING_BASE_URL", llm_base_url),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        enable_contextual_retrieval=_to_bool(
            os.getenv("ENABLE_CONTEXTUAL_RETRIEVAL"), default=False
        ),
        context_model=os.getenv("CONTEXT_MODEL", "gpt-4o-mini"),
        context_max_tokens=_to_int(os.getenv("CONTEXT_MAX_TOKENS"), default=100, minimum=1),
        context_temperature=_to_float(
            os.getenv("CONTEXT_TEMPERATURE"), default=0.3, minimum=0.0, maximum=2.0
        ),
        context_window_size=_to_int(os.getenv("CONTEXT_WINDOW_SIZE"), default=1, minimum=0),
        context_batch_size=_to_int(os.getenv("CONTEXT_BATCH_SIZE"), default=10, minimum=1),
        context_batch_delay_seconds=_to_float(
            os.getenv("CONTEXT_BATCH_DELAY_SECONDS"), default=1.0, minimum=0.0
        ),
        rag_chunk_size=_to_int(os.getenv("RAG_CHUNK_SIZE"), default=800, minimum=1),
        rag_chunk_overlap=_to_int(os.getenv("RAG_CHUNK_OVERLAP"), default=100, minimum=0),
        rag_search_limit=_to_int(os.getenv("RAG_SEARCH_LIMIT"), default=5, minimum=1),
        rag_search_threshold=_to_float(
            os.getenv("RAG_SEARCH_THRESHOLD"), default=0.7, minimum=0.0, maximum=1.0
        ),
        rag_search_alpha=_to_float(
            os.getenv("RAG_SEARCH_ALPHA"), default=0.5, minimum=0.0, maximum=1.0
        ),
    )
