"""Fixed-window chat rate limiter stored alongside the ledger."""

from __future__ import annotations

import time
from typing import Callable

from tenant_rag.core.errors import RateLimitExceeded
from tenant_rag.core.logging import get_logger
from tenant_rag.db.sqlite import SQLiteDatabase

logger = get_logger(__name__)


class RateLimiter:
    """Allow at most ``max_requests`` per tenant in each ``window_seconds`` window.

    The window is one row per tenant. A single upsert either opens a fresh
    window, counts the request in the current one, or changes nothing when
    the window is full; in the last case no row comes back.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        max_requests: int = 5,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    def allow_burst(self, tenant_id: str) -> int:
        """Count one request; return the count in the window or raise ``RateLimitExceeded``."""
        now = self.clock()
        row = self.db.query_one(
            """
            INSERT INTO rate_windows (tenant_id, window_start, count)
            VALUES (?, ?, 1)
            ON CONFLICT (tenant_id) DO UPDATE SET
              count = CASE WHEN excluded.window_start - window_start >= ? THEN 1 ELSE count + 1 END,
              window_start = CASE WHEN excluded.window_start - window_start >= ? THEN excluded.window_start ELSE window_start END
            WHERE excluded.window_start - window_start >= ? OR count < ?
            RETURNING count
            """,
            [
                tenant_id,
                now,
                self.window_seconds,
                self.window_seconds,
                self.window_seconds,
                self.max_requests,
            ],
        )
        if row is None:
            retry_after = self.retry_after(tenant_id, now)
            logger.info("Rate limit hit for tenant %s, retry in %.1fs", tenant_id, retry_after)
            raise RateLimitExceeded(
                f"Too many messages: limit is {self.max_requests} per {int(self.window_seconds)} seconds",
                retry_after=retry_after,
            )
        return int(row["count"])

    def retry_after(self, tenant_id: str, now: float | None = None) -> float:
        now = self.clock() if now is None else now
        row = self.db.query_one("SELECT window_start FROM rate_windows WHERE tenant_id = ?", [tenant_id])
        if row is None:
            return 0.0
        return max(0.0, row["window_start"] + self.window_seconds - now)


__all__ = ["RateLimiter"]
