"""Chunking utilities."""

from __future__ import annotations

from collections import deque
from typing import Sequence

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

# Paragraph, line, sentence, word; the empty separator means a hard cut.
SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", "! ", "? ", " ", "")


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping chunks of at most ``chunk_size`` characters.

    Text is first broken on the coarsest separator that occurs in it; any
    piece still longer than ``chunk_size`` is broken again on the next finer
    separator. Pieces are then packed greedily, and each new chunk starts with
    the trailing pieces of the previous one that fit in ``chunk_overlap``.
    The result depends only on the arguments.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be in [0, chunk_size)")
    if not text.strip():
        return []
    pieces = _split_recursive(text, chunk_size, SEPARATORS)
    return _merge_pieces(pieces, chunk_size, chunk_overlap)


def _split_recursive(text: str, chunk_size: int, separators: Sequence[str]) -> list[str]:
    if len(text) <= chunk_size:
        return [text]
    separator, finer = _pick_separator(text, separators)
    if separator == "":
        return [text[start : start + chunk_size] for start in range(0, len(text), chunk_size)]
    pieces: list[str] = []
    for piece in _split_keeping_separator(text, separator):
        if len(piece) <= chunk_size:
            pieces.append(piece)
        else:
            pieces.extend(_split_recursive(piece, chunk_size, finer))
    return pieces


def _pick_separator(text: str, separators: Sequence[str]) -> tuple[str, Sequence[str]]:
    for idx, separator in enumerate(separators):
        if separator == "" or separator in text:
            return separator, separators[idx + 1 :]
    return "", ()


def _split_keeping_separator(text: str, separator: str) -> list[str]:
    """Split so that ``"".join(result) == text``; separators stay on the left piece."""
    parts = text.split(separator)
    pieces = [part + separator for part in parts[:-1]]
    pieces.append(parts[-1])
    return [piece for piece in pieces if piece]


def _merge_pieces(pieces: Sequence[str], chunk_size: int, chunk_overlap: int) -> list[str]:
    chunks: list[str] = []
    window: deque[str] = deque()
    window_len = 0
    for piece in pieces:
        if window and window_len + len(piece) > chunk_size:
            _emit(chunks, window)
            while window and (window_len > chunk_overlap or window_len + len(piece) > chunk_size):
                window_len -= len(window.popleft())
        window.append(piece)
        window_len += len(piece)
    if window:
        _emit(chunks, window)
    return chunks


def _emit(chunks: list[str], window: Sequence[str]) -> None:
    chunk = "".join(window).strip()
    if chunk:
        chunks.append(chunk)


__all__ = ["chunk_text", "SEPARATORS", "DEFAULT_CHUNK_SIZE", "DEFAULT_CHUNK_OVERLAP"]
