"""Tenant-partitioned vector store."""

from __future__ import annotations

import heapq
import math
import threading
from dataclasses import dataclass
from typing import Sequence

from tenant_rag.core.errors import CountMismatch, NotFound, ValidationError
from tenant_rag.core.logging import get_logger
from tenant_rag.core.metrics import INDEX_SIZE
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.ingest.embeddings import vector_from_bytes, vector_to_bytes
from tenant_rag.ingest.types import EmbeddedChunk, SearchHit
from tenant_rag.utils.ids import new_id
from tenant_rag.utils.time import now_ms

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _Partition:
    """Read-only snapshot of one tenant's vectors at ``version``."""

    version: int
    ids: tuple[str, ...]
    source_ids: tuple[str, ...]
    seqs: tuple[int, ...]
    texts: tuple[str, ...]
    vectors: tuple[tuple[float, ...], ...]
    norms: tuple[float, ...]

    @property
    def size(self) -> int:
        return len(self.ids)


class VectorStore:
    """Cosine-similarity index partitioned by tenant.

    Records live in the ``vectors`` table. Each tenant's partition is loaded
    with a ``WHERE tenant_id = ?`` query, so a search never reads another
    tenant's vectors. Every insert or delete bumps ``tenants.index_version``
    in the same transaction, and a search reloads the partition whenever the
    stored version no longer matches, which keeps stores that share one
    database file (other workers, other processes) coherent.
    """

    def __init__(self, db: SQLiteDatabase, dim: int) -> None:
        self.db = db
        self.dim = dim
        self._partitions: dict[str, _Partition] = {}
        self._lock = threading.RLock()

    def store(self, tenant_id: str, source_id: str, embedded: Sequence[EmbeddedChunk]) -> int:
        """Insert all chunk/vector pairs for a source in one transaction."""
        if not embedded:
            return 0
        self._check_source_owner(tenant_id, source_id)
        for item in embedded:
            if len(item.vector) != self.dim:
                raise ValidationError(
                    f"Vector dimension mismatch: expected {self.dim}, got {len(item.vector)}"
                )
        now = now_ms()
        rows = [
            (
                new_id("vec"),
                tenant_id,
                source_id,
                item.seq,
                item.text,
                self.dim,
                vector_to_bytes(item.vector),
                now,
            )
            for item in embedded
        ]
        with self._lock:
            with self.db.transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO vectors (id, tenant_id, source_id, seq, text, dim, vector, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                conn.execute(
                    """
                    INSERT INTO tenants (id, index_version, created_at, updated_at)
                    VALUES (?, 1, ?, ?)
                    ON CONFLICT (id) DO UPDATE SET
                      index_version = index_version + 1,
                      updated_at = excluded.updated_at
                    """,
                    [tenant_id, now, now],
                )
            self._partitions.pop(tenant_id, None)
        INDEX_SIZE.inc(len(rows))
        logger.info("Stored %s vectors for source %s", len(rows), source_id)
        return len(rows)

    def store_parallel(
        self,
        tenant_id: str,
        source_id: str,
        chunks: Sequence[str],
        vectors: Sequence[Sequence[float]],
    ) -> int:
        """Store chunks and vectors given as two parallel sequences."""
        if len(chunks) != len(vectors):
            raise CountMismatch(f"Chunks and embeddings count mismatch ({len(chunks)} != {len(vectors)})")
        embedded = [
            EmbeddedChunk(seq=seq, text=text, vector=tuple(vector))
            for seq, (text, vector) in enumerate(zip(chunks, vectors))
        ]
        return self.store(tenant_id, source_id, embedded)

    def search(self, tenant_id: str, query_vector: Sequence[float], k: int = 5) -> list[SearchHit]:
        if k <= 0:
            return []
        if len(query_vector) != self.dim:
            raise ValidationError("Query vector dimension mismatch")
        partition = self._partition(tenant_id)
        if partition.size == 0:
            return []
        query_norm = math.sqrt(sum(value * value for value in query_vector))
        if query_norm == 0:
            return []
        scored = (
            (_dot(vector, query_vector) / (norm * query_norm) if norm else 0.0, idx)
            for idx, (vector, norm) in enumerate(zip(partition.vectors, partition.norms))
        )
        best = heapq.nlargest(k, scored, key=lambda item: (item[0], -item[1]))
        return [
            SearchHit(
                record_id=partition.ids[idx],
                source_id=partition.source_ids[idx],
                seq=partition.seqs[idx],
                text=partition.texts[idx],
                score=score,
            )
            for score, idx in best
        ]

    def count(self, tenant_id: str) -> int:
        row = self.db.query_one("SELECT COUNT(*) AS count FROM vectors WHERE tenant_id = ?", [tenant_id])
        return int(row["count"]) if row else 0

    def delete_source(self, tenant_id: str, source_id: str) -> int:
        with self._lock:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM vectors WHERE tenant_id = ? AND source_id = ?",
                    [tenant_id, source_id],
                )
                deleted = cursor.rowcount
                if deleted:
                    conn.execute(
                        "UPDATE tenants SET index_version = index_version + 1, updated_at = ? WHERE id = ?",
                        [now_ms(), tenant_id],
                    )
            self._partitions.pop(tenant_id, None)
        if deleted:
            INDEX_SIZE.dec(deleted)
        return deleted

    def index_version(self, tenant_id: str) -> int:
        row = self.db.query_one("SELECT index_version FROM tenants WHERE id = ?", [tenant_id])
        return int(row["index_version"]) if row else 0

    def _partition(self, tenant_id: str) -> _Partition:
        # Read the version before the rows: a write landing in between leaves
        # newer rows under an older version, which only costs one extra reload.
        version = self.index_version(tenant_id)
        with self._lock:
            partition = self._partitions.get(tenant_id)
            if partition is None or partition.version != version:
                partition = self._load_partition(tenant_id, version)
                self._partitions[tenant_id] = partition
            return partition

    def _load_partition(self, tenant_id: str, version: int) -> _Partition:
        rows = self.db.query(
            "SELECT id, source_id, seq, text, vector FROM vectors WHERE tenant_id = ? ORDER BY source_id, seq",
            [tenant_id],
        )
        vectors = tuple(tuple(vector_from_bytes(row["vector"])) for row in rows)
        return _Partition(
            version=version,
            ids=tuple(row["id"] for row in rows),
            source_ids=tuple(row["source_id"] for row in rows),
            seqs=tuple(row["seq"] for row in rows),
            texts=tuple(row["text"] for row in rows),
            vectors=vectors,
            norms=tuple(math.sqrt(sum(value * value for value in vector)) for vector in vectors),
        )

    def _check_source_owner(self, tenant_id: str, source_id: str) -> None:
        row = self.db.query_one("SELECT tenant_id FROM sources WHERE id = ?", [source_id])
        if row is None:
            raise NotFound(f"Source {source_id} not found")
        if row["tenant_id"] != tenant_id:
            raise ValidationError("Source belongs to a different tenant")


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


__all__ = ["VectorStore"]
