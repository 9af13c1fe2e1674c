"""Sentence-aware sliding-window chunking for local retrieval."""
from __future__ import annotations

import logging
from typing import Iterator, List, Tuple

LOGGER = logging.getLogger(__name__)

MIN_CHUNK_CHARS = 20
_BREAK_CHARS = (".", "\n")


def chunk_parameters_for(context_window: int) -> Tuple[int, int]:
    """Chunk size and overlap tracking the generation budget."""

    if context_window <= 1024:
        chunk_size = 256
    elif context_window <= 2048:
        chunk_size = 512
    else:
        chunk_size = 1024
    return chunk_size, chunk_size // 4


def iter_chunk_windows(text: str, chunk_size: int = 512, overlap: int = 128) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` windows over ``text``.

    A window that would end mid-sentence is pulled back to the last ``.`` or
    newline, provided that break lies in the second half of the window.
    """

    if not text:
        return
    chunk_size = max(chunk_size, 1)
    overlap = max(overlap, 0)
    if overlap >= chunk_size:
        overlap = chunk_size // 4

    text_length = len(text)
    start = 0
    while start < text_length:
        end = start + chunk_size
        if end < text_length:
            breakpoint_index = max(text.rfind(char, start, end + 1) for char in _BREAK_CHARS)
            if breakpoint_index > start + chunk_size / 2:
                end = breakpoint_index + 1
        else:
            end = text_length
        yield start, end
        if end >= text_length:
            break
        start = max(end - overlap, start + 1)


def chunk_text(text: str, chunk_size: int = 512, overlap: int = 128) -> List[str]:
    chunks: List[str] = []
    for start, end in iter_chunk_windows(text, chunk_size, overlap):
        chunk = text[start:end].strip()
        if len(chunk) >= MIN_CHUNK_CHARS:
            chunks.append(chunk)
    LOGGER.debug("Chunked %s chars into %s chunks (size=%s overlap=%s)", len(text), len(chunks), chunk_size, overlap)
    return chunks


__all__ = ["MIN_CHUNK_CHARS", "chunk_parameters_for", "chunk_text", "iter_chunk_windows"]
