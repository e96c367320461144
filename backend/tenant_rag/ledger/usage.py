"""Per-tenant token ledger.

Balances live in the ``tenants`` table. Every check and every change is a
single conditional SQL statement, so the ledger stays correct when several
threads or processes share the database:

* ``check_and_reserve`` places a hold with
  ``UPDATE ... WHERE balance - reserved >= cost``. Two callers can only both
  pass when the balance covers both holds.
* ``deduct`` clamps at zero and captures the balance it replaced in the same
  statement, which is what threshold alerts are computed from.
"""

from __future__ import annotations

from dataclasses import dataclass

from tenant_rag.core.errors import InsufficientTokens, NotFound, ValidationError, ZeroBalance
from tenant_rag.core.logging import get_logger
from tenant_rag.core.metrics import TOKENS_DEDUCTED
from tenant_rag.db.sqlite import SQLiteDatabase
from tenant_rag.ledger.notifications import BalanceAlert, LogNotifier, Notifier, crossed_thresholds
from tenant_rag.models.entities import UsageEvent
from tenant_rag.utils.ids import new_id
from tenant_rag.utils.time import now_ms

logger = get_logger(__name__)

TOKENS_PER_CURRENCY_UNIT = 2500
AVG_TOKENS_PER_CHAT = 1800
# (minimum amount, bonus percent), highest first
BONUS_TIERS: tuple[tuple[int, int], ...] = ((999, 15), (499, 10), (199, 5))

USAGE_KINDS = frozenset({"chat", "chat_cached", "upload", "scrape", "recharge"})


def tokens_for_amount(amount: int) -> int:
    """Tokens credited for a payment of ``amount`` currency units."""
    if amount <= 0:
        raise ValidationError("Recharge amount must be positive")
    bonus = next((percent for minimum, percent in BONUS_TIERS if amount >= minimum), 0)
    return amount * TOKENS_PER_CURRENCY_UNIT * (100 + bonus) // 100


def estimated_chats(balance: int) -> int:
    return max(0, balance) // AVG_TOKENS_PER_CHAT


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    tenant_id: str
    balance: int
    reserved: int
    knowledge_version: int

    @property
    def available(self) -> int:
        return max(0, self.balance - self.reserved)

    @property
    def estimated_chats(self) -> int:
        return estimated_chats(self.balance)


class Reservation:
    """A hold on part of a tenant's balance.

    Used as a context manager the hold is released on exit unless it was
    settled by :meth:`UsageLedger.deduct` first.
    """

    def __init__(self, ledger: "UsageLedger", tenant_id: str, amount: int) -> None:
        self.ledger = ledger
        self.tenant_id = tenant_id
        self.amount = amount
        self.closed = False

    def release(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.ledger._release_hold(self.tenant_id, self.amount)

    def __enter__(self) -> "Reservation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Reservation(tenant_id={self.tenant_id!r}, amount={self.amount}, {state})"


class UsageLedger:
    def __init__(
        self,
        db: SQLiteDatabase,
        low_balance_threshold: int = 10_000,
        notifier: Notifier | None = None,
    ) -> None:
        self.db = db
        self.low_balance_threshold = low_balance_threshold
        self.notifier = notifier or LogNotifier()

    def ensure_tenant(self, tenant_id: str, opening_balance: int = 0) -> BalanceSnapshot:
        """Create the tenant's ledger row if missing; existing balances are untouched."""
        if opening_balance < 0:
            raise ValidationError("Opening balance cannot be negative")
        now = now_ms()
        self.db.execute(
            """
            INSERT INTO tenants (id, balance, previous_balance, reserved, knowledge_version, created_at, updated_at)
            VALUES (?, ?, ?, 0, 0, ?, ?)
            ON CONFLICT (id) DO NOTHING
            """,
            [tenant_id, opening_balance, opening_balance, now, now],
        )
        return self.snapshot(tenant_id)

    def snapshot(self, tenant_id: str) -> BalanceSnapshot:
        row = self.db.query_one(
            "SELECT balance, reserved, knowledge_version FROM tenants WHERE id = ?",
            [tenant_id],
        )
        if row is None:
            return BalanceSnapshot(tenant_id=tenant_id, balance=0, reserved=0, knowledge_version=0)
        return BalanceSnapshot(
            tenant_id=tenant_id,
            balance=row["balance"],
            reserved=row["reserved"],
            knowledge_version=row["knowledge_version"],
        )

    def balance(self, tenant_id: str) -> int:
        return self.snapshot(tenant_id).balance

    def knowledge_version(self, tenant_id: str) -> int:
        return self.snapshot(tenant_id).knowledge_version

    def check_and_reserve(self, tenant_id: str, estimated_cost: int) -> Reservation:
        """Hold ``estimated_cost`` tokens or raise ``ZeroBalance``/``InsufficientTokens``."""
        if estimated_cost < 0:
            raise ValidationError("Estimated cost cannot be negative")
        row = self.db.query_one(
            """
            UPDATE tenants SET reserved = reserved + ?, updated_at = ?
            WHERE id = ? AND balance > 0 AND balance - reserved >= ?
            RETURNING balance, reserved
            """,
            [estimated_cost, now_ms(), tenant_id, estimated_cost],
        )
        if row is None:
            current = self.snapshot(tenant_id)
            if current.balance <= 0:
                raise ZeroBalance()
            raise InsufficientTokens(required=estimated_cost, available=current.available)
        logger.debug("Reserved %s tokens for tenant %s", estimated_cost, tenant_id)
        return Reservation(self, tenant_id, estimated_cost)

    def deduct(
        self,
        tenant_id: str,
        actual_cost: int,
        kind: str,
        description: str = "",
        reservation: Reservation | None = None,
    ) -> int:
        """Charge ``actual_cost`` (clamped at zero balance) and return the new balance."""
        if actual_cost < 0:
            raise ValidationError("Cost cannot be negative")
        if kind not in USAGE_KINDS:
            raise ValidationError(f"Unknown usage kind: {kind}")
        hold = 0
        if reservation is not None and not reservation.closed:
            if reservation.tenant_id != tenant_id:
                raise ValidationError("Reservation belongs to a different tenant")
            hold = reservation.amount
        now = now_ms()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE tenants SET
                  previous_balance = balance,
                  balance = MAX(0, balance - ?),
                  reserved = MAX(0, reserved - ?),
                  updated_at = ?
                WHERE id = ?
                RETURNING previous_balance, balance
                """,
                [actual_cost, hold, now, tenant_id],
            )
            row = cursor.fetchone()
            cursor.close()
            if row is None:
                raise NotFound(f"Tenant {tenant_id} has no ledger")
            previous_balance, balance = row["previous_balance"], row["balance"]
            self._record_event(conn, tenant_id, kind, description, actual_cost, balance, now)
        if reservation is not None:
            reservation.closed = True
        TOKENS_DEDUCTED.labels(kind=kind).inc(actual_cost)
        logger.info(
            "Deducted %s tokens from tenant %s (%s -> %s)",
            actual_cost,
            tenant_id,
            previous_balance,
            balance,
            extra={"ctx_tenant": tenant_id, "ctx_kind": kind},
        )
        self._notify_thresholds(tenant_id, previous_balance, balance)
        return balance

    def recharge(self, tenant_id: str, tokens: int, description: str = "Recharge") -> int:
        if tokens <= 0:
            raise ValidationError("Recharge must add a positive number of tokens")
        now = now_ms()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tenants (id, balance, previous_balance, reserved, knowledge_version, created_at, updated_at)
                VALUES (?, ?, 0, 0, 0, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                  previous_balance = balance,
                  balance = balance + excluded.balance,
                  updated_at = excluded.updated_at
                RETURNING balance
                """,
                [tenant_id, tokens, now, now],
            )
            balance = cursor.fetchone()["balance"]
            cursor.close()
            self._record_event(conn, tenant_id, "recharge", description, tokens, balance, now)
        logger.info("Recharged tenant %s with %s tokens (balance %s)", tenant_id, tokens, balance)
        return balance

    def history(self, tenant_id: str, limit: int = 50) -> list[UsageEvent]:
        rows = self.db.query(
            "SELECT * FROM usage_events WHERE tenant_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            [tenant_id, limit],
        )
        return [UsageEvent.from_row(row) for row in rows]

    def _release_hold(self, tenant_id: str, amount: int) -> None:
        if amount <= 0:
            return
        self.db.execute(
            "UPDATE tenants SET reserved = MAX(0, reserved - ?), updated_at = ? WHERE id = ?",
            [amount, now_ms(), tenant_id],
        )

    def _record_event(self, conn, tenant_id: str, kind: str, description: str, tokens: int, balance: int, now: int) -> None:
        conn.execute(
            """
            INSERT INTO usage_events (id, tenant_id, kind, description, tokens, balance_after, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [new_id("use"), tenant_id, kind, description, tokens, balance, now],
        )

    def _notify_thresholds(self, tenant_id: str, previous_balance: int, balance: int) -> None:
        for kind, threshold in crossed_thresholds(previous_balance, balance, self.low_balance_threshold):
            self.notifier.notify(
                BalanceAlert(
                    tenant_id=tenant_id,
                    kind=kind,
                    threshold=threshold,
                    previous_balance=previous_balance,
                    balance=balance,
                )
            )


__all__ = [
    "UsageLedger",
    "Reservation",
    "BalanceSnapshot",
    "tokens_for_amount",
    "estimated_chats",
    "TOKENS_PER_CURRENCY_UNIT",
    "AVG_TOKENS_PER_CHAT",
]
