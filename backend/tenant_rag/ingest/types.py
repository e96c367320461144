"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass

from tenant_rag.models.entities import Source


@dataclass(slots=True)
class ExtractedText:
    """Plain text recovered from an uploaded file or a fetched page."""

    text: str
    content_type: str
    title: str | None = None
    page_count: int | None = None


@dataclass(frozen=True, slots=True)
class EmbeddedChunk:
    """A chunk paired with its embedding, ready to be stored."""

    seq: int
    text: str
    vector: tuple[float, ...]


@dataclass(slots=True)
class SearchHit:
    """One nearest-neighbour match returned by the vector store."""

    record_id: str
    source_id: str
    seq: int
    text: str
    score: float


@dataclass(slots=True)
class IngestResult:
    """Outcome of a successful ingestion."""

    source: Source
    chunk_count: int
    tokens_charged: int
    balance: int


__all__ = ["ExtractedText", "EmbeddedChunk", "SearchHit", "IngestResult"]
