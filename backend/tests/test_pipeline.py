"""Tests for the ingestion pipeline."""

import pytest

from tenant_rag.core.errors import (
    DocumentLimitReached,
    DuplicateSource,
    EmbeddingServiceFailure,
    ExtractionFailure,
    ExtractionTooShort,
    InsufficientTokens,
    InvalidTransition,
    UnsupportedFormat,
    ZeroBalance,
)
from tenant_rag.ingest.pipeline import IngestPipeline
from tenant_rag.models.entities import SourceStatus

from conftest import FailingEmbedder


def test_file_ingestion_indexes_charges_and_purges_blobs(pipeline, ledger, vector_store, settings, sample_text) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    result = pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")

    assert result.source.status is SourceStatus.PROCESSED_AND_DELETED
    assert result.source.raw_blob_key is None and result.source.text_blob_key is None
    assert result.chunk_count == vector_store.count("t1") > 1
    assert result.tokens_charged == 10_000
    assert result.balance == ledger.balance("t1") == 15_000
    assert ledger.snapshot("t1").reserved == 0
    assert ledger.knowledge_version("t1") == 1
    assert not any(path.is_file() for path in settings.blob_dir.rglob("*"))
    assert ledger.history("t1")[0].description == "File: policy.txt"


def test_website_ingestion_keeps_text_blob(pipeline, ledger, blob_store) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    result = pipeline.ingest_website("t1", "https://shop.example/hours")

    assert result.source.status is SourceStatus.INDEXED
    assert result.source.title == "Opening Hours"
    assert result.source.page_count == 1
    assert blob_store.exists(result.source.text_blob_key)
    assert "Saturdays" in blob_store.get(result.source.text_blob_key).decode()
    assert result.balance == 20_000
    assert ledger.history("t1")[0].kind == "scrape"


def test_short_document_fails_without_charge(pipeline, ledger, registry, vector_store) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(ExtractionTooShort):
        pipeline.ingest_file("t1", "tiny.txt", b"x" * 30, "text/plain")

    [source] = registry.list_sources("t1")
    assert source.status is SourceStatus.FAILED
    assert "too short" in source.error
    assert vector_store.count("t1") == 0
    assert ledger.balance("t1") == 25_000
    assert ledger.snapshot("t1").reserved == 0


def test_document_at_length_floor_is_indexed(pipeline, ledger, vector_store) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(ExtractionTooShort):
        pipeline.ingest_file("t1", "short.txt", b"x" * 49, "text/plain")

    result = pipeline.ingest_file("t1", "short.txt", b"x" * 50, "text/plain")
    assert result.source.status is SourceStatus.PROCESSED_AND_DELETED
    assert result.chunk_count == vector_store.count("t1") == 1
    assert ledger.balance("t1") == 15_000


def test_embedding_failure_leaves_no_vectors(
    db, settings, ledger, vector_store, registry, blob_store, fetcher, sample_text
) -> None:
    failing = IngestPipeline(
        database=db,
        settings=settings,
        ledger=ledger,
        embedding_client=FailingEmbedder(fail_on=2),
        vector_store=vector_store,
        registry=registry,
        blob_store=blob_store,
        fetcher=fetcher,
    )
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(EmbeddingServiceFailure):
        failing.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")

    assert vector_store.count("t1") == 0
    assert registry.list_sources("t1")[0].status is SourceStatus.FAILED
    assert ledger.balance("t1") == 25_000
    assert not any(path.is_file() for path in settings.blob_dir.rglob("*"))


def test_failure_after_source_vanished_still_removes_blobs(
    db, settings, ledger, vector_store, registry, blob_store, fetcher, sample_text
) -> None:
    class VanishingEmbedder(FailingEmbedder):
        def embed(self, text: str) -> list[float]:
            db.execute("DELETE FROM sources WHERE tenant_id = ?", ["t1"])
            return super().embed(text)

    failing = IngestPipeline(
        database=db,
        settings=settings,
        ledger=ledger,
        embedding_client=VanishingEmbedder(fail_on=1),
        vector_store=vector_store,
        registry=registry,
        blob_store=blob_store,
        fetcher=fetcher,
    )
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(EmbeddingServiceFailure):
        failing.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")

    assert registry.list_sources("t1") == []
    assert ledger.balance("t1") == 25_000
    assert ledger.snapshot("t1").reserved == 0
    assert not any(path.is_file() for path in settings.blob_dir.rglob("*"))


def test_in_flight_source_cannot_be_deleted(
    db, settings, ledger, vector_store, registry, blob_store, fetcher, sample_text
) -> None:
    attempts: list[Exception] = []

    class DeletingEmbedder(FailingEmbedder):
        def embed(self, text: str) -> list[float]:
            if not attempts:
                [source] = registry.list_sources("t1")
                try:
                    registry.delete("t1", source.id)
                except InvalidTransition as exc:
                    attempts.append(exc)
            return super().embed(text)

    pipeline = IngestPipeline(
        database=db,
        settings=settings,
        ledger=ledger,
        embedding_client=DeletingEmbedder(fail_on=10_000),
        vector_store=vector_store,
        registry=registry,
        blob_store=blob_store,
        fetcher=fetcher,
    )
    ledger.ensure_tenant("t1", opening_balance=25_000)
    result = pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")

    assert attempts and all(isinstance(exc, InvalidTransition) for exc in attempts)
    assert result.source.status is SourceStatus.PROCESSED_AND_DELETED
    assert not any(path.is_file() for path in settings.blob_dir.rglob("*"))
    registry.delete("t1", result.source.id)
    assert vector_store.count("t1") == 0


def test_fetch_failure_marks_source_failed(pipeline, ledger, registry) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(ExtractionFailure):
        pipeline.ingest_website("t1", "https://shop.example/missing")
    assert registry.list_sources("t1")[0].status is SourceStatus.FAILED
    assert ledger.balance("t1") == 25_000


def test_quota_checks_run_before_registration(pipeline, ledger, registry, sample_text) -> None:
    with pytest.raises(ZeroBalance):
        pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")
    ledger.ensure_tenant("t2", opening_balance=4_000)
    with pytest.raises(InsufficientTokens):
        pipeline.ingest_website("t2", "https://shop.example/hours")
    assert registry.list_sources("t1") == registry.list_sources("t2") == []


def test_unsupported_upload_is_rejected_up_front(pipeline, ledger, registry) -> None:
    ledger.ensure_tenant("t1", opening_balance=25_000)
    with pytest.raises(UnsupportedFormat):
        pipeline.ingest_file("t1", "photo.png", b"\x89PNG", "image/png")
    assert registry.list_sources("t1") == []


def test_duplicate_upload_releases_hold(pipeline, ledger, sample_text) -> None:
    ledger.ensure_tenant("t1", opening_balance=50_000)
    pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")
    with pytest.raises(DuplicateSource):
        pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")
    assert ledger.snapshot("t1").reserved == 0
    assert ledger.balance("t1") == 40_000


def test_document_limit(pipeline, ledger, settings, sample_text) -> None:
    ledger.ensure_tenant("t1", opening_balance=1_000_000)
    for index in range(settings.max_file_sources):
        pipeline.ingest_file("t1", f"doc{index}.txt", sample_text.encode(), "text/plain")
    with pytest.raises(DocumentLimitReached) as exc_info:
        pipeline.ingest_file("t1", "one-more.txt", sample_text.encode(), "text/plain")
    assert "Remove an existing document" in exc_info.value.user_message
