"""Tenant-curated question/answer pairs that override generation."""

from __future__ import annotations

from tenant_rag.core.errors import NotFound, ValidationError
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.models.entities import ManualQAEntry
from tenant_rag.utils.ids import new_id
from tenant_rag.utils.text import match_key
from tenant_rag.utils.time import now_ms

DEFAULT_CATEGORY = "General"


class ManualQARepository:
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def create(self, tenant_id: str, question: str, answer: str, category: str | None = None) -> ManualQAEntry:
        question, answer = _require_text(question, "question"), _require_text(answer, "answer")
        entry_id = new_id("qa")
        now = now_ms()
        self.db.execute(
            """
            INSERT INTO manual_qa (id, tenant_id, question, question_key, answer, category, frequency, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
            [entry_id, tenant_id, question, match_key(question), answer, category or DEFAULT_CATEGORY, now, now],
        )
        return self.get(tenant_id, entry_id)

    def get(self, tenant_id: str, entry_id: str) -> ManualQAEntry:
        row = self.db.query_one(
            "SELECT * FROM manual_qa WHERE id = ? AND tenant_id = ?",
            [entry_id, tenant_id],
        )
        if row is None:
            raise NotFound(f"Q&A entry {entry_id} not found")
        return ManualQAEntry.from_row(row)

    def list_entries(self, tenant_id: str) -> list[ManualQAEntry]:
        rows = self.db.query(
            "SELECT * FROM manual_qa WHERE tenant_id = ? ORDER BY frequency DESC, created_at DESC",
            [tenant_id],
        )
        return [ManualQAEntry.from_row(row) for row in rows]

    def update(
        self,
        tenant_id: str,
        entry_id: str,
        question: str | None = None,
        answer: str | None = None,
        category: str | None = None,
    ) -> ManualQAEntry:
        current = self.get(tenant_id, entry_id)
        question = _require_text(question, "question") if question is not None else current.question
        answer = _require_text(answer, "answer") if answer is not None else current.answer
        self.db.execute(
            """
            UPDATE manual_qa SET question = ?, question_key = ?, answer = ?, category = ?, updated_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            [question, match_key(question), answer, category or current.category, now_ms(), entry_id, tenant_id],
        )
        return self.get(tenant_id, entry_id)

    def delete(self, tenant_id: str, entry_id: str) -> None:
        cursor = self.db.execute("DELETE FROM manual_qa WHERE id = ? AND tenant_id = ?", [entry_id, tenant_id])
        if cursor.rowcount == 0:
            raise NotFound(f"Q&A entry {entry_id} not found")

    def match(self, tenant_id: str, message: str) -> ManualQAEntry | None:
        """Exact case-insensitive match on the trimmed question; bumps its frequency."""
        key = match_key(message)
        if not key:
            return None
        row = self.db.query_one(
            """
            UPDATE manual_qa SET frequency = frequency + 1, updated_at = ?
            WHERE id = (
              SELECT id FROM manual_qa WHERE tenant_id = ? AND question_key = ?
              ORDER BY created_at, id LIMIT 1
            )
            RETURNING *
            """,
            [now_ms(), tenant_id, key],
        )
        return ManualQAEntry.from_row(row) if row else None


def _require_text(value: str | None, field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} must not be empty")
    return cleaned


__all__ = ["ManualQARepository", "DEFAULT_CATEGORY"]
