"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from tenant_rag.models.entities import ManualQAEntry, Source, UsageEvent
from tenant_rag.utils.time import ms_to_datetime


class WebsiteSourceRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Absolute http(s) URL of the page to index")


class SourceResponse(BaseModel):
    id: str
    kind: Literal["file", "website"]
    identity: str
    status: str
    error: str | None = None
    content_type: str | None = None
    title: str | None = None
    size_bytes: int | None = None
    page_count: int | None = None
    chunk_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_source(cls, source: Source) -> "SourceResponse":
        return cls(
            id=source.id,
            kind=source.kind.value,
            identity=source.identity,
            status=source.status.value,
            error=source.error,
            content_type=source.content_type,
            title=source.title,
            size_bytes=source.size_bytes,
            page_count=source.page_count,
            chunk_count=source.chunk_count,
            created_at=ms_to_datetime(source.created_at),
            updated_at=ms_to_datetime(source.updated_at),
        )


class IngestResponse(BaseModel):
    source: SourceResponse
    chunk_count: int
    tokens_charged: int
    balance: int


class DeleteResponse(BaseModel):
    status: Literal["ok"] = "ok"
    deleted: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)


class ChatResponse(BaseModel):
    answer: str
    origin: Literal["manual", "cache", "fallback", "generated"]
    tokens_charged: int
    balance: int
    source_ids: list[str] = Field(default_factory=list)


class QACreateRequest(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    category: str | None = None


class QAUpdateRequest(BaseModel):
    question: str | None = None
    answer: str | None = None
    category: str | None = None


class QAResponse(BaseModel):
    id: str
    question: str
    answer: str
    category: str
    frequency: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entry(cls, entry: ManualQAEntry) -> "QAResponse":
        return cls(
            id=entry.id,
            question=entry.question,
            answer=entry.answer,
            category=entry.category,
            frequency=entry.frequency,
            created_at=ms_to_datetime(entry.created_at),
            updated_at=ms_to_datetime(entry.updated_at),
        )


class BalanceResponse(BaseModel):
    tenant_id: str
    balance: int
    reserved: int
    available: int
    estimated_chats: int
    knowledge_version: int


class RechargeRequest(BaseModel):
    tokens: int | None = Field(default=None, gt=0, description="Tokens to credit directly")
    amount: int | None = Field(default=None, gt=0, description="Payment amount converted with bonus tiers")


class UsageEventResponse(BaseModel):
    id: str
    kind: str
    description: str
    tokens: int
    balance_after: int
    created_at: datetime

    @classmethod
    def from_event(cls, event: UsageEvent) -> "UsageEventResponse":
        return cls(
            id=event.id,
            kind=event.kind,
            description=event.description,
            tokens=event.tokens,
            balance_after=event.balance_after,
            created_at=ms_to_datetime(event.created_at),
        )


class ErrorResponse(BaseModel):
    error: str
    detail: str


__all__ = [
    "WebsiteSourceRequest",
    "SourceResponse",
    "IngestResponse",
    "DeleteResponse",
    "ChatRequest",
    "ChatResponse",
    "QACreateRequest",
    "QAUpdateRequest",
    "QAResponse",
    "BalanceResponse",
    "RechargeRequest",
    "UsageEventResponse",
    "ErrorResponse",
]
