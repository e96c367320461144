"""Answer cache keyed by tenant, message fingerprint and knowledge version."""

from __future__ import annotations

from dataclasses import dataclass

from tenant_rag.core.logging import get_logger
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.utils.ids import fingerprint
from tenant_rag.utils.time import now_ms

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Indexing new knowledge bumps the version, which retires older entries."""

    tenant_id: str
    query_hash: str
    knowledge_version: int

    @classmethod
    def for_message(cls, tenant_id: str, message: str, knowledge_version: int) -> "CacheKey":
        return cls(tenant_id=tenant_id, query_hash=fingerprint(message), knowledge_version=knowledge_version)


class AnswerCache:
    def __init__(self, db: SQLiteDatabase, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.db = db
        self.ttl_ms = ttl_seconds * 1000

    def get(self, key: CacheKey, now: int | None = None) -> str | None:
        now = now_ms() if now is None else now
        row = self.db.query_one(
            """
            SELECT answer FROM answer_cache
            WHERE tenant_id = ? AND query_hash = ? AND knowledge_version = ? AND created_at > ?
            """,
            [key.tenant_id, key.query_hash, key.knowledge_version, now - self.ttl_ms],
        )
        if row is None:
            return None
        logger.debug("Answer cache hit for tenant %s", key.tenant_id)
        return row["answer"]

    def put(self, key: CacheKey, answer: str, now: int | None = None) -> None:
        self.db.execute(
            """
            INSERT INTO answer_cache (tenant_id, query_hash, knowledge_version, answer, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (tenant_id, query_hash, knowledge_version) DO UPDATE SET
              answer = excluded.answer,
              created_at = excluded.created_at
            """,
            [key.tenant_id, key.query_hash, key.knowledge_version, answer, now_ms() if now is None else now],
        )

    def purge_expired(self, now: int | None = None) -> int:
        """Drop entries older than the TTL; returns the number removed."""
        now = now_ms() if now is None else now
        cursor = self.db.execute("DELETE FROM answer_cache WHERE created_at <= ?", [now - self.ttl_ms])
        if cursor.rowcount:
            logger.info("Purged %s expired cached answers", cursor.rowcount)
        return cursor.rowcount


__all__ = ["AnswerCache", "CacheKey"]
