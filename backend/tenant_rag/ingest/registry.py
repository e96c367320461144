"""Source registry: lifecycle of every file or website a tenant adds."""

from __future__ import annotations

import sqlite3
from typing import Any

from tenant_rag.core.errors import DuplicateSource, InvalidTransition, NotFound
from tenant_rag.core.logging import get_logger
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.models.entities import Source, SourceKind, SourceStatus
from tenant_rag.retrieval.vector_store import VectorStore
from tenant_rag.utils.ids import new_id
from tenant_rag.utils.time import now_ms

logger = get_logger(__name__)

# status -> statuses it may move to
_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.PENDING: frozenset({SourceStatus.PROCESSING, SourceStatus.FAILED}),
    SourceStatus.PROCESSING: frozenset({SourceStatus.INDEXED, SourceStatus.FAILED}),
    SourceStatus.INDEXED: frozenset({SourceStatus.PROCESSED_AND_DELETED}),
    SourceStatus.FAILED: frozenset(),
    SourceStatus.PROCESSED_AND_DELETED: frozenset(),
}

_IN_FLIGHT = (SourceStatus.PENDING, SourceStatus.PROCESSING)

_META_COLUMNS = ("content_type", "title", "size_bytes", "page_count")


class SourceRegistry:
    """Persist sources and enforce their status machine.

    ``pending -> processing -> indexed [-> processed_and_deleted]``, with
    ``failed`` reachable from either non-terminal state. Every transition is
    a compare-and-set on the current status, so two workers cannot both move
    the same source forward.
    """

    def __init__(self, db: SQLiteDatabase, vector_store: VectorStore | None = None) -> None:
        self.db = db
        self.vector_store = vector_store

    def begin_ingestion(self, tenant_id: str, kind: SourceKind | str, identity: str, **meta: Any) -> Source:
        kind = SourceKind(kind)
        unknown = set(meta) - set(_META_COLUMNS)
        if unknown:
            raise TypeError(f"Unknown source metadata: {', '.join(sorted(unknown))}")
        # A failed attempt does not hold the identity; retrying replaces it.
        self.db.execute(
            "DELETE FROM sources WHERE tenant_id = ? AND kind = ? AND identity = ? AND status = ?",
            [tenant_id, kind.value, identity, SourceStatus.FAILED.value],
        )
        source_id = new_id("src")
        now = now_ms()
        try:
            self.db.execute(
                """
                INSERT INTO sources (
                  id, tenant_id, kind, identity, status, content_type, title,
                  size_bytes, page_count, chunk_count, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                [
                    source_id,
                    tenant_id,
                    kind.value,
                    identity,
                    SourceStatus.PENDING.value,
                    meta.get("content_type"),
                    meta.get("title"),
                    meta.get("size_bytes"),
                    meta.get("page_count"),
                    now,
                    now,
                ],
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateSource(f"{kind.value.capitalize()} {identity!r} is already registered") from exc
        logger.info("Registered %s source %s for tenant %s", kind.value, source_id, tenant_id)
        return self.get(tenant_id, source_id)

    def mark_processing(self, source_id: str) -> None:
        self._transition(source_id, SourceStatus.PROCESSING)

    def mark_indexed(self, source_id: str, chunk_count: int) -> None:
        """Move to ``indexed`` and bump the tenant's knowledge version atomically."""
        now = now_ms()
        with self.db.transaction() as conn:
            row = self._transition(source_id, SourceStatus.INDEXED, conn=conn, chunk_count=chunk_count)
            conn.execute(
                """
                INSERT INTO tenants (id, balance, previous_balance, reserved, knowledge_version, created_at, updated_at)
                VALUES (?, 0, 0, 0, 1, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                  knowledge_version = knowledge_version + 1,
                  updated_at = excluded.updated_at
                """,
                [row["tenant_id"], now, now],
            )

    def mark_failed(self, source_id: str, error: str) -> None:
        self._transition(source_id, SourceStatus.FAILED, error=error[:1000])

    def mark_blobs_purged(self, source_id: str) -> None:
        self._transition(
            source_id,
            SourceStatus.PROCESSED_AND_DELETED,
            raw_blob_key=None,
            text_blob_key=None,
        )

    def set_blob_keys(self, source_id: str, raw_blob_key: str | None = None, text_blob_key: str | None = None) -> None:
        self.db.execute(
            """
            UPDATE sources SET
              raw_blob_key = COALESCE(?, raw_blob_key),
              text_blob_key = COALESCE(?, text_blob_key),
              updated_at = ?
            WHERE id = ?
            """,
            [raw_blob_key, text_blob_key, now_ms(), source_id],
        )

    def update_meta(self, source_id: str, **meta: Any) -> None:
        columns = [column for column in _META_COLUMNS if column in meta]
        if not columns:
            return
        assignments = ", ".join(f"{column} = ?" for column in columns)
        self.db.execute(
            f"UPDATE sources SET {assignments}, updated_at = ? WHERE id = ?",
            [meta[column] for column in columns] + [now_ms(), source_id],
        )

    def get(self, tenant_id: str, source_id: str) -> Source:
        row = self.db.query_one(
            "SELECT * FROM sources WHERE id = ? AND tenant_id = ?",
            [source_id, tenant_id],
        )
        if row is None:
            raise NotFound(f"Source {source_id} not found")
        return Source.from_row(row)

    def list_sources(self, tenant_id: str, kind: SourceKind | str | None = None) -> list[Source]:
        if kind is None:
            rows = self.db.query(
                "SELECT * FROM sources WHERE tenant_id = ? ORDER BY created_at DESC, id",
                [tenant_id],
            )
        else:
            rows = self.db.query(
                "SELECT * FROM sources WHERE tenant_id = ? AND kind = ? ORDER BY created_at DESC, id",
                [tenant_id, SourceKind(kind).value],
            )
        return [Source.from_row(row) for row in rows]

    def count_files(self, tenant_id: str) -> int:
        row = self.db.query_one(
            "SELECT COUNT(*) AS count FROM sources WHERE tenant_id = ? AND kind = ? AND status != ?",
            [tenant_id, SourceKind.FILE.value, SourceStatus.FAILED.value],
        )
        return int(row["count"]) if row else 0

    def delete(self, tenant_id: str, source_id: str) -> Source:
        """Remove a settled source and every vector derived from it.

        ``pending`` and ``processing`` sources belong to an ingestion still in
        flight and raise ``InvalidTransition`` until it indexes or fails.
        """
        source = self.get(tenant_id, source_id)
        if source.status in _IN_FLIGHT:
            raise InvalidTransition(f"Source {source_id} is still {source.status.value} and cannot be deleted yet")
        if self.vector_store is not None:
            self.vector_store.delete_source(tenant_id, source_id)
        in_flight = [status.value for status in _IN_FLIGHT]
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sources WHERE id = ? AND tenant_id = ? AND status NOT IN (?, ?) RETURNING id",
                [source_id, tenant_id, *in_flight],
            )
            deleted = cursor.fetchone()
            cursor.close()
            if deleted is None:
                raise InvalidTransition(f"Source {source_id} changed state while being deleted")
            if source.chunk_count:
                conn.execute(
                    "UPDATE tenants SET knowledge_version = knowledge_version + 1, updated_at = ? WHERE id = ?",
                    [now_ms(), tenant_id],
                )
        logger.info("Deleted source %s for tenant %s", source_id, tenant_id)
        return source

    def _transition(
        self,
        source_id: str,
        target: SourceStatus,
        conn: sqlite3.Connection | None = None,
        **columns: Any,
    ) -> sqlite3.Row:
        allowed_from = [status.value for status, targets in _TRANSITIONS.items() if target in targets]
        assignments = "".join(f", {column} = ?" for column in columns)
        placeholders = ",".join("?" for _ in allowed_from)
        sql = (
            f"UPDATE sources SET status = ?, updated_at = ?{assignments} "
            f"WHERE id = ? AND status IN ({placeholders}) RETURNING tenant_id"
        )
        params = [target.value, now_ms(), *columns.values(), source_id, *allowed_from]
        if conn is None:
            row = self.db.query_one(sql, params)
        else:
            cursor = conn.execute(sql, params)
            row = cursor.fetchone()
            cursor.close()
        if row is None:
            current = self.db.query_one("SELECT status FROM sources WHERE id = ?", [source_id])
            if current is None:
                raise NotFound(f"Source {source_id} not found")
            raise InvalidTransition(f"Cannot move source {source_id} from {current['status']} to {target.value}")
        logger.debug("Source %s -> %s", source_id, target.value)
        return row


__all__ = ["SourceRegistry"]
