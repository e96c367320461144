"""Test fixtures for Tenant RAG."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from tenant_rag.chat.generation import Generation  # noqa: E402
from tenant_rag.core.config import Settings  # noqa: E402
from tenant_rag.core.errors import (  # noqa: E402
    EmbeddingServiceFailure,
    ExtractionFailure,
    GenerationServiceFailure,
)
from tenant_rag.db.sqlite import SQLiteDatabase  # noqa: E402
from tenant_rag.ingest.blobs import LocalBlobStore  # noqa: E402
from tenant_rag.ingest.embeddings import HashedEmbeddingModel  # noqa: E402
from tenant_rag.ingest.pipeline import IngestPipeline  # noqa: E402
from tenant_rag.ingest.registry import SourceRegistry  # noqa: E402
from tenant_rag.ledger.usage import UsageLedger  # noqa: E402
from tenant_rag.retrieval.vector_store import VectorStore  # noqa: E402

EMBEDDING_DIM = 64

PAGE_HTML = """
<html>
  <head><title>Opening Hours</title><script>var tracking = 1;</script></head>
  <body>
    <nav>Home | About | Contact</nav>
    <main>
      <p>Our store is open from nine in the morning until six in the evening on weekdays.</p>
      <p>On Saturdays we open at ten and close at four. We are closed on Sundays and public holidays.</p>
    </main>
    <footer>Copyright footer text</footer>
  </body>
</html>
"""


class FakeGenerator:
    """Records prompts and returns a canned answer with usage."""

    def __init__(self, text: str = "Generated answer.", prompt_tokens: int | None = 300, completion_tokens: int | None = 50):
        self.text = text
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls: list[tuple[str, str, float]] = []
        self.fail = False

    def generate(self, system_prompt: str, user_message: str, temperature: float = 0.1) -> Generation:
        self.calls.append((system_prompt, user_message, temperature))
        if self.fail:
            raise GenerationServiceFailure("model unavailable", provider_name="fake")
        return Generation(self.text, self.prompt_tokens, self.completion_tokens)


class FakeFetcher:
    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = pages or {}

    def fetch(self, url: str) -> str:
        if url not in self.pages:
            raise ExtractionFailure(f"HTTP 404 for {url}", provider_name="fetcher")
        return self.pages[url]


class FailingEmbedder:
    """Embedding client whose ``fail_on``-th call raises."""

    model_name = "failing"

    def __init__(self, fail_on: int = 1, dim: int = EMBEDDING_DIM) -> None:
        self._dim = dim
        self.fail_on = fail_on
        self.calls = 0
        self._inner = HashedEmbeddingModel(dim=dim)

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls >= self.fail_on:
            raise EmbeddingServiceFailure("embedding backend down", provider_name="fake")
        return self._inner.embed(text)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("TRAG_DB_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("TRAG_BLOB_DIR", str(tmp_path / "api-blobs"))
    monkeypatch.setenv("TRAG_EMBEDDING_BACKEND", "hashed")
    monkeypatch.setenv("TRAG_EMBEDDING_DIM", str(EMBEDDING_DIM))
    monkeypatch.delenv("TRAG_CONFIG", raising=False)
    monkeypatch.delenv("TRAG_NOTIFY_WEBHOOK_URL", raising=False)

    from tenant_rag.api import dependencies as deps

    HashedEmbeddingModel._instances.clear()
    deps.reset_dependencies()
    yield
    HashedEmbeddingModel._instances.clear()
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "tenant_rag.db",
        blob_dir=tmp_path / "blobs",
        embedding_backend="hashed",
        embedding_dim=EMBEDDING_DIM,
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest.fixture
def db(settings: Settings) -> SQLiteDatabase:
    database = SQLiteDatabase(settings.db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def embedder() -> HashedEmbeddingModel:
    return HashedEmbeddingModel(dim=EMBEDDING_DIM)


@pytest.fixture
def vector_store(db: SQLiteDatabase) -> VectorStore:
    return VectorStore(db, EMBEDDING_DIM)


@pytest.fixture
def registry(db: SQLiteDatabase, vector_store: VectorStore) -> SourceRegistry:
    return SourceRegistry(db, vector_store)


@pytest.fixture
def ledger(db: SQLiteDatabase) -> UsageLedger:
    return UsageLedger(db, low_balance_threshold=10_000)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher({"https://shop.example/hours": PAGE_HTML})


@pytest.fixture
def blob_store(settings: Settings) -> LocalBlobStore:
    return LocalBlobStore(settings.blob_dir)


@pytest.fixture
def pipeline(
    db: SQLiteDatabase,
    settings: Settings,
    ledger: UsageLedger,
    embedder: HashedEmbeddingModel,
    vector_store: VectorStore,
    registry: SourceRegistry,
    blob_store: LocalBlobStore,
    fetcher: FakeFetcher,
) -> IngestPipeline:
    return IngestPipeline(
        database=db,
        settings=settings,
        ledger=ledger,
        embedding_client=embedder,
        vector_store=vector_store,
        registry=registry,
        blob_store=blob_store,
        fetcher=fetcher,
    )


@pytest.fixture(scope="session")
def sample_text() -> str:
    return (
        "Returns policy\n\n"
        "Items can be returned within thirty days of delivery. Refunds are issued to the original payment method.\n\n"
        "Shipping\n\n"
        "Orders ship within two business days. Express delivery is available in most cities for an extra fee."
    )
