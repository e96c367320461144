"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from tenant_rag.chat.cache import AnswerCache
from tenant_rag.chat.generation import GenerationClient, build_generation_client
from tenant_rag.chat.manual_qa import ManualQARepository
from tenant_rag.chat.orchestrator import ChatOrchestrator
from tenant_rag.core.config import Settings, get_settings
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.ingest.blobs import BlobStore, LocalBlobStore
from tenant_rag.ingest.embeddings import EmbeddingClient, build_embedding_client
from tenant_rag.ingest.fetch import HttpPageFetcher, PageFetcher
from tenant_rag.ingest.pipeline import IngestPipeline
from tenant_rag.ingest.registry import SourceRegistry
from tenant_rag.ledger.notifications import LogNotifier, Notifier, WebhookNotifier
from tenant_rag.ledger.rate_limit import RateLimiter
from tenant_rag.ledger.usage import UsageLedger
from tenant_rag.retrieval import Retriever, VectorStore

_DB: SQLiteDatabase | None = None
_EMBEDDING_CLIENT: EmbeddingClient | None = None
_GENERATOR: GenerationClient | None = None
_FETCHER: PageFetcher | None = None
_BLOB_STORE: BlobStore | None = None
_VECTOR_STORE: VectorStore | None = None
_LEDGER: UsageLedger | None = None
_PIPELINE: IngestPipeline | None = None
_ANSWER_CACHE: AnswerCache | None = None
_ORCHESTRATOR: ChatOrchestrator | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDING_CLIENT
    if _EMBEDDING_CLIENT is None:
        _EMBEDDING_CLIENT = build_embedding_client(get_app_settings())
    return _EMBEDDING_CLIENT


def get_generation_client() -> GenerationClient:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = build_generation_client(get_app_settings())
    return _GENERATOR


def get_page_fetcher() -> PageFetcher:
    global _FETCHER
    if _FETCHER is None:
        _FETCHER = HttpPageFetcher(timeout=get_app_settings().fetch_timeout)
    return _FETCHER


def get_blob_store() -> BlobStore:
    global _BLOB_STORE
    if _BLOB_STORE is None:
        _BLOB_STORE = LocalBlobStore(get_app_settings().blob_dir)
    return _BLOB_STORE


def get_vector_store() -> VectorStore:
    global _VECTOR_STORE
    if _VECTOR_STORE is None:
        _VECTOR_STORE = VectorStore(get_database(), get_embedding_client().dim)
    return _VECTOR_STORE


def get_notifier() -> Notifier:
    settings = get_app_settings()
    if settings.notify_webhook_url:
        return WebhookNotifier(settings.notify_webhook_url)
    return LogNotifier()


def get_ledger() -> UsageLedger:
    global _LEDGER
    if _LEDGER is None:
        _LEDGER = UsageLedger(
            get_database(),
            low_balance_threshold=get_app_settings().low_balance_threshold,
            notifier=get_notifier(),
        )
    return _LEDGER


def get_source_registry() -> SourceRegistry:
    return SourceRegistry(get_database(), get_vector_store())


def get_manual_qa() -> ManualQARepository:
    return ManualQARepository(get_database())


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            database=get_database(),
            settings=get_app_settings(),
            ledger=get_ledger(),
            embedding_client=get_embedding_client(),
            vector_store=get_vector_store(),
            registry=get_source_registry(),
            blob_store=get_blob_store(),
            fetcher=get_page_fetcher(),
        )
    return _PIPELINE


def get_answer_cache() -> AnswerCache | None:
    """Return the shared answer cache, or ``None`` when caching is disabled."""
    global _ANSWER_CACHE
    settings = get_app_settings()
    if not settings.cache_enabled:
        return None
    if _ANSWER_CACHE is None:
        _ANSWER_CACHE = AnswerCache(get_database(), settings.cache_ttl_seconds)
    return _ANSWER_CACHE


def get_chat_orchestrator() -> ChatOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        settings = get_app_settings()
        db = get_database()
        _ORCHESTRATOR = ChatOrchestrator(
            ledger=get_ledger(),
            rate_limiter=RateLimiter(db, settings.rate_limit_max, settings.rate_limit_window),
            manual_qa=get_manual_qa(),
            retriever=Retriever(get_vector_store(), get_embedding_client(), top_k=settings.retrieval_top_k),
            generator=get_generation_client(),
            cache=get_answer_cache(),
            min_tokens=settings.chat_min_tokens,
            fallback_tokens=settings.chat_fallback_tokens,
            cached_answer_tokens=settings.cached_answer_tokens,
            temperature=settings.generation_temperature,
        )
    return _ORCHESTRATOR


def reset_dependencies() -> None:
    """Drop every cached singleton; the next request rebuilds them from settings."""
    global _DB, _EMBEDDING_CLIENT, _GENERATOR, _FETCHER, _BLOB_STORE
    global _VECTOR_STORE, _LEDGER, _PIPELINE, _ANSWER_CACHE, _ORCHESTRATOR
    if _DB is not None:
        _DB.close()
    get_app_settings.cache_clear()
    get_settings.cache_clear()
    _DB = None
    _EMBEDDING_CLIENT = None
    _GENERATOR = None
    _FETCHER = None
    _BLOB_STORE = None
    _VECTOR_STORE = None
    _LEDGER = None
    _PIPELINE = None
    _ANSWER_CACHE = None
    _ORCHESTRATOR = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedding_client",
    "get_generation_client",
    "get_page_fetcher",
    "get_blob_store",
    "get_vector_store",
    "get_ledger",
    "get_source_registry",
    "get_manual_qa",
    "get_ingest_pipeline",
    "get_answer_cache",
    "get_chat_orchestrator",
    "reset_dependencies",
]
