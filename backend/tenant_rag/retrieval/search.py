"""Query-side retrieval: embed a message and search the tenant's partition."""

from __future__ import annotations

import sqlite3
import time

from tenant_rag.core.errors import TenantRagError
from tenant_rag.core.logging import get_logger
from tenant_rag.ingest.embeddings import EmbeddingClient
from tenant_rag.ingest.types import SearchHit
from tenant_rag.retrieval.vector_store import VectorStore

logger = get_logger(__name__)


class Retriever:
    """Embeds a chat message and returns the tenant's nearest chunks.

    Retrieval problems never abort a chat: an embedding or search failure is
    logged and reported as "no results", which leads to the fallback answer.
    """

    def __init__(self, vector_store: VectorStore, embedding_client: EmbeddingClient, top_k: int = 5) -> None:
        self.vector_store = vector_store
        self.embedding_client = embedding_client
        self.top_k = top_k

    def retrieve(self, tenant_id: str, query_text: str, k: int | None = None) -> list[SearchHit]:
        start = time.perf_counter()
        try:
            query_vector = self.embedding_client.embed(query_text)
            hits = self.vector_store.search(tenant_id, query_vector, k=k or self.top_k)
        except (TenantRagError, sqlite3.Error) as exc:
            logger.warning("Retrieval failed for tenant %s, answering without context: %s", tenant_id, exc)
            return []
        logger.debug(
            "Retrieved %s chunks for tenant %s in %.3fs",
            len(hits),
            tenant_id,
            time.perf_counter() - start,
        )
        return hits


__all__ = ["Retriever"]
