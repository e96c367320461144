"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum


class SourceKind(str, Enum):
    FILE = "file"
    WEBSITE = "website"


class SourceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"
    PROCESSED_AND_DELETED = "processed_and_deleted"

    @property
    def is_terminal(self) -> bool:
        return self in (SourceStatus.INDEXED, SourceStatus.FAILED, SourceStatus.PROCESSED_AND_DELETED)


@dataclass(slots=True)
class Source:
    id: str
    tenant_id: str
    kind: SourceKind
    identity: str
    status: SourceStatus
    error: str | None
    content_type: str | None
    title: str | None
    size_bytes: int | None
    page_count: int | None
    raw_blob_key: str | None
    text_blob_key: str | None
    chunk_count: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Source":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            kind=SourceKind(row["kind"]),
            identity=row["identity"],
            status=SourceStatus(row["status"]),
            error=row["error"],
            content_type=row["content_type"],
            title=row["title"],
            size_bytes=row["size_bytes"],
            page_count=row["page_count"],
            raw_blob_key=row["raw_blob_key"],
            text_blob_key=row["text_blob_key"],
            chunk_count=row["chunk_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class ManualQAEntry:
    id: str
    tenant_id: str
    question: str
    answer: str
    category: str
    frequency: int
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ManualQAEntry":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            question=row["question"],
            answer=row["answer"],
            category=row["category"],
            frequency=row["frequency"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class UsageEvent:
    id: str
    tenant_id: str
    kind: str
    description: str
    tokens: int
    balance_after: int
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UsageEvent":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            kind=row["kind"],
            description=row["description"],
            tokens=row["tokens"],
            balance_after=row["balance_after"],
            created_at=row["created_at"],
        )


__all__ = ["SourceKind", "SourceStatus", "Source", "ManualQAEntry", "UsageEvent"]
