"""Exception hierarchy for the tenant RAG core.

Every error carries a human-readable ``message`` and an optional
``provider_name`` naming the external collaborator that failed (``openai``,
``fetcher``, ``blobs``). ``user_message`` is the text shown to a tenant; for
quota errors it tells them whether to wait, recharge, or remove a document.

    TenantRagError
    +-- ValidationError
    |   +-- UnsupportedFormat
    |   +-- DuplicateSource
    |   +-- InvalidTransition
    |   +-- CountMismatch
    +-- NotFound
    +-- QuotaExceeded
    |   +-- DocumentLimitReached
    |   +-- RateLimitExceeded
    |   +-- ZeroBalance
    |   +-- InsufficientTokens
    +-- ExtractionFailure
    |   +-- ExtractionTooShort
    +-- EmbeddingServiceFailure
    +-- GenerationServiceFailure
    +-- StorageFailure
"""

from __future__ import annotations


class TenantRagError(Exception):
    """Base exception for all tenant RAG errors."""

    code = "error"
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, provider_name: str | None = None) -> None:
        self._message = message or self.default_message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def user_message(self) -> str:
        return self._message

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ValidationError(TenantRagError):
    code = "validation_error"
    default_message = "Invalid input"


class UnsupportedFormat(ValidationError):
    code = "unsupported_format"
    default_message = "Unsupported content type"


class DuplicateSource(ValidationError):
    """The file name or URL is already registered for this tenant."""

    code = "duplicate_source"
    default_message = "This source is already registered; delete it before adding it again"


class InvalidTransition(ValidationError):
    code = "invalid_transition"
    default_message = "Illegal source status transition"


class CountMismatch(ValidationError):
    code = "count_mismatch"
    default_message = "Chunks and embeddings count mismatch"


class NotFound(TenantRagError):
    code = "not_found"
    default_message = "Resource not found"


class QuotaExceeded(TenantRagError):
    code = "quota_exceeded"
    default_message = "Quota exceeded"


class DocumentLimitReached(QuotaExceeded):
    code = "document_limit"
    default_message = "Document limit reached"

    @property
    def user_message(self) -> str:
        return f"{self.message}. Remove an existing document to upload a new one."


class RateLimitExceeded(QuotaExceeded):
    code = "rate_limited"
    default_message = "Too many messages"

    def __init__(
        self,
        message: str | None = None,
        retry_after: float = 0.0,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message, provider_name=provider_name)
        self.retry_after = max(0.0, retry_after)

    @property
    def user_message(self) -> str:
        return f"{self.message}. Please wait {int(self.retry_after) + 1} seconds and try again."


class ZeroBalance(QuotaExceeded):
    code = "zero_balance"
    default_message = "Token balance is exhausted"

    @property
    def user_message(self) -> str:
        return f"{self.message}. Please recharge your account to continue."


class InsufficientTokens(QuotaExceeded):
    code = "insufficient_tokens"
    default_message = "Insufficient tokens"

    def __init__(
        self,
        message: str | None = None,
        required: int = 0,
        available: int = 0,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message, provider_name=provider_name)
        self.required = required
        self.available = available

    @property
    def user_message(self) -> str:
        return (
            f"{self.message} ({self.available} available, {self.required} required). "
            "Please recharge your account to continue."
        )


class ExtractionFailure(TenantRagError):
    code = "extraction_failed"
    default_message = "Text extraction failed"


class ExtractionTooShort(ExtractionFailure):
    code = "extraction_too_short"
    default_message = "Extracted text is too short or empty"


class EmbeddingServiceFailure(TenantRagError):
    code = "embedding_failed"
    default_message = "Embedding service failed"


class GenerationServiceFailure(TenantRagError):
    code = "generation_failed"
    default_message = "Generation service failed"


class StorageFailure(TenantRagError):
    code = "storage_failed"
    default_message = "Blob storage operation failed"


__all__ = [
    "TenantRagError",
    "ValidationError",
    "UnsupportedFormat",
    "DuplicateSource",
    "InvalidTransition",
    "CountMismatch",
    "NotFound",
    "QuotaExceeded",
    "DocumentLimitReached",
    "RateLimitExceeded",
    "ZeroBalance",
    "InsufficientTokens",
    "ExtractionFailure",
    "ExtractionTooShort",
    "EmbeddingServiceFailure",
    "GenerationServiceFailure",
    "StorageFailure",
]
