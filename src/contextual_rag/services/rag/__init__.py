from contextual_rag.services.rag.annotator import ChunkAnnotator, ContextualizationError
from contextual_rag.services.rag.batching import BatchScheduler, FixedBatchScheduler, run_batched
from contextual_rag.services.rag.chunker import tokenize_words, window_characters, window_words
from contextual_rag.services.rag.synthesizer import ContextSynthesizer, synthesize_contexts
from contextual_rag.services.rag.types import AnnotationOptions, BatchConfig, Chunk

__all__ = [
    "AnnotationOptions",
    "BatchConfig",
    "BatchScheduler",
    "Chunk",
    "ChunkAnnotator",
    "ContextSynthesizer",
    "ContextualizationError",
    "FixedBatchScheduler",
    "run_batched",
    "synthesize_contexts",
    "tokenize_words",
    "window_characters",
    "window_words",
]
