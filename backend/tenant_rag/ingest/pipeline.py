"""Ingest pipeline orchestration."""

from __future__ import annotations

import time

from tenant_rag.core.config import Settings
from tenant_rag.core.errors import DocumentLimitReached, NotFound, StorageFailure, UnsupportedFormat, ValidationError
from tenant_rag.core.logging import get_logger
from tenant_rag.core.metrics import INGEST_DURATION
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.ingest import blobs
from tenant_rag.ingest.blobs import BlobStore, LocalBlobStore
from tenant_rag.ingest.chunker import chunk_text
from tenant_rag.ingest.embeddings import EmbeddingClient, build_embedding_client, embed_chunks
from tenant_rag.ingest.extract import (
    HTML_TYPE,
    TEXT_TYPE,
    ExtractorRegistry,
    extract_file_text,
    extract_page_text,
    guess_content_type,
)
from tenant_rag.ingest.fetch import HttpPageFetcher, PageFetcher, validate_url
from tenant_rag.ingest.registry import SourceRegistry
from tenant_rag.ingest.types import IngestResult
from tenant_rag.ledger.usage import UsageLedger
from tenant_rag.models.entities import Source, SourceKind
from tenant_rag.retrieval.vector_store import VectorStore

logger = get_logger(__name__)


class IngestPipeline:
    """Coordinate quota checks, extraction, chunking, embeddings, and persistence.

    An ingestion either ends with every chunk indexed and the fixed cost
    deducted, or with the source marked ``failed``, no vectors, no charge,
    and the error re-raised.
    """

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        ledger: UsageLedger,
        embedding_client: EmbeddingClient | None = None,
        vector_store: VectorStore | None = None,
        registry: SourceRegistry | None = None,
        blob_store: BlobStore | None = None,
        fetcher: PageFetcher | None = None,
    ) -> None:
        self.db = database
        self.settings = settings
        self.ledger = ledger
        self.embedding_client = embedding_client or build_embedding_client(settings)
        self.vector_store = vector_store or VectorStore(database, self.embedding_client.dim)
        self.registry = registry or SourceRegistry(database, self.vector_store)
        self.blob_store = blob_store or LocalBlobStore(settings.blob_dir)
        self.fetcher = fetcher or HttpPageFetcher(timeout=settings.fetch_timeout)
        self.extractors = ExtractorRegistry()

    def ingest_file(
        self,
        tenant_id: str,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
    ) -> IngestResult:
        file_name = file_name.strip()
        if not file_name:
            raise ValidationError("File name must not be empty")
        if len(data) > self.settings.max_upload_bytes:
            raise ValidationError(f"File exceeds the {self.settings.max_upload_bytes} byte upload limit")
        content_type = guess_content_type(file_name, content_type)
        if self.extractors.for_content_type(content_type) is None:
            raise UnsupportedFormat(f"Unsupported file type: {content_type}")
        if self.registry.count_files(tenant_id) >= self.settings.max_file_sources:
            raise DocumentLimitReached(f"Document limit reached ({self.settings.max_file_sources} files)")

        start = time.perf_counter()
        with self.ledger.check_and_reserve(tenant_id, self.settings.file_ingest_tokens) as reservation:
            source = self.registry.begin_ingestion(
                tenant_id,
                SourceKind.FILE,
                file_name,
                content_type=content_type,
                size_bytes=len(data),
            )
            staged: list[str] = []
            try:
                self.registry.mark_processing(source.id)
                raw_key = self.blob_store.put(blobs.upload_key(tenant_id, file_name), data, content_type)
                staged.append(raw_key)
                self.registry.set_blob_keys(source.id, raw_blob_key=raw_key)

                extracted = extract_file_text(
                    data,
                    content_type,
                    min_chars=self.settings.file_min_chars,
                    registry=self.extractors,
                )
                text_key = self._stage_text(blobs.text_key(tenant_id), extracted.text)
                staged.append(text_key)
                self.registry.set_blob_keys(source.id, text_blob_key=text_key)
                self.registry.update_meta(source.id, title=extracted.title, page_count=extracted.page_count)

                chunk_count = self._index(source, extracted.text)
            except Exception as exc:
                self._fail(source, exc, staged, "file", start)
                raise

            balance = self.ledger.deduct(
                tenant_id,
                self.settings.file_ingest_tokens,
                "upload",
                f"File: {file_name}",
                reservation=reservation,
            )

        self._purge_blobs(source, staged)
        INGEST_DURATION.labels(kind="file", status="indexed").observe(time.perf_counter() - start)
        logger.info("Indexed file %s for tenant %s (%s chunks)", file_name, tenant_id, chunk_count)
        return IngestResult(
            source=self.registry.get(tenant_id, source.id),
            chunk_count=chunk_count,
            tokens_charged=self.settings.file_ingest_tokens,
            balance=balance,
        )

    def ingest_website(self, tenant_id: str, url: str) -> IngestResult:
        url = validate_url(url)
        start = time.perf_counter()
        with self.ledger.check_and_reserve(tenant_id, self.settings.website_ingest_tokens) as reservation:
            source = self.registry.begin_ingestion(tenant_id, SourceKind.WEBSITE, url, content_type=HTML_TYPE)
            staged: list[str] = []
            try:
                self.registry.mark_processing(source.id)
                html = self.fetcher.fetch(url)
                extracted = extract_page_text(html, url, min_chars=self.settings.page_min_chars)
                text_key = self._stage_text(blobs.website_key(tenant_id, url), extracted.text)
                staged.append(text_key)
                self.registry.set_blob_keys(source.id, text_blob_key=text_key)
                self.registry.update_meta(
                    source.id,
                    title=extracted.title,
                    page_count=extracted.page_count,
                    size_bytes=len(extracted.text.encode("utf-8")),
                )

                chunk_count = self._index(source, extracted.text)
            except Exception as exc:
                self._fail(source, exc, staged, "website", start)
                raise

            balance = self.ledger.deduct(
                tenant_id,
                self.settings.website_ingest_tokens,
                "scrape",
                f"URL: {url}",
                reservation=reservation,
            )

        INGEST_DURATION.labels(kind="website", status="indexed").observe(time.perf_counter() - start)
        logger.info("Indexed %s for tenant %s (%s chunks)", url, tenant_id, chunk_count)
        return IngestResult(
            source=self.registry.get(tenant_id, source.id),
            chunk_count=chunk_count,
            tokens_charged=self.settings.website_ingest_tokens,
            balance=balance,
        )

    # Internal helpers -------------------------------------------------

    def _index(self, source: Source, text: str) -> int:
        chunks = chunk_text(
            text,
            chunk_size=self.settings.chunk_size,
            chunk_overlap=self.settings.chunk_overlap,
        )
        if not chunks:
            raise ValidationError("Document produced no chunks")
        embedded = embed_chunks(self.embedding_client, chunks, concurrency=self.settings.embedding_concurrency)
        stored = self.vector_store.store(source.tenant_id, source.id, embedded)
        self.registry.mark_indexed(source.id, stored)
        return stored

    def _stage_text(self, key: str, text: str) -> str:
        return self.blob_store.put(key, text.encode("utf-8"), TEXT_TYPE)

    def _fail(self, source: Source, exc: Exception, staged: list[str], kind: str, start: float) -> None:
        logger.error("Ingestion of %s %s failed: %s", kind, source.identity, exc)
        for key in staged:
            try:
                self.blob_store.delete(key)
            except StorageFailure as cleanup_exc:
                logger.warning("Could not remove staged blob %s: %s", key, cleanup_exc)
        self.vector_store.delete_source(source.tenant_id, source.id)
        try:
            self.registry.mark_failed(source.id, str(exc))
        except NotFound:
            logger.warning("Source %s vanished before it could be marked failed", source.id)
        INGEST_DURATION.labels(kind=kind, status="failed").observe(time.perf_counter() - start)

    def _purge_blobs(self, source: Source, keys: list[str]) -> None:
        try:
            for key in keys:
                self.blob_store.delete(key)
        except StorageFailure as exc:
            logger.error("Blob cleanup failed for source %s, leaving it indexed: %s", source.id, exc)
            return
        self.registry.mark_blobs_purged(source.id)


__all__ = ["IngestPipeline"]
