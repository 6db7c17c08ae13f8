from __future__ import annotations

from typing import Callable, Sequence

from contextual_rag.services.rag.types import Chunk


def tokenize_words(content: str) -> list[str]:
    """Split on runs of whitespace.

    Empty and whitespace-only documents still produce one empty token, so they
    window into exactly one empty chunk rather than none.
    """
    tokens = content.split()
    if not tokens:
        return [""]
    return tokens


def _window(
    units: Sequence[str],
    *,
    unit_size: int,
    overlap: int,
    join: Callable[[Sequence[str]], str],
) -> list[Chunk]:
    chunks: list[Chunk] = []
    total = len(units)
    start = 0

    while start < total:
        end = min(start + unit_size, total)
        chunks.append(
            Chunk(
                content=join(units[start:end]),
                chunk_index=len(chunks),
                start_offset=start,
                end_offset=end,
            )
        )

        if overlap >= unit_size:
            # a zero or negative stride would never terminate
            start = end
        else:
            start += unit_size - overlap

    return chunks


def window_words(content: str, unit_size: int = 800, overlap: int = 100) -> list[Chunk]:
    """Chunk ``content`` into overlapping windows of ``unit_size`` words.

    Offsets are word indices, not character positions.
    """
    tokens = tokenize_words(content)
    if tokens == [""]:
        # the placeholder token of a blank document has no width
        return [Chunk(content="", chunk_index=0, start_offset=0, end_offset=0)]
    return _window(tokens, unit_size=unit_size, overlap=overlap, join=" ".join)


def window_characters(content: str, unit_size: int = 3200, overlap: int = 400) -> list[Chunk]:
    """Character-offset variant of :func:`window_words`.

    Roughly four characters per model token, so the defaults match the word
    variant's ~800 token windows. An empty string yields no chunks.
    """
    return _window(content, unit_size=unit_size, overlap=overlap, join="".join)
