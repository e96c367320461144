"""Balance threshold notifications."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol

import requests

from tenant_rag.core.logging import get_logger

logger = get_logger(__name__)

ZERO = "zero_balance"
LOW = "low_balance"


@dataclass(frozen=True, slots=True)
class BalanceAlert:
    tenant_id: str
    kind: str
    threshold: int
    previous_balance: int
    balance: int


class Notifier(Protocol):
    def notify(self, alert: BalanceAlert) -> None:
        ...


class LogNotifier:
    """Default notifier: one structured log line per alert."""

    def notify(self, alert: BalanceAlert) -> None:
        logger.warning(
            "Tenant %s crossed %s threshold (%s -> %s)",
            alert.tenant_id,
            alert.kind,
            alert.previous_balance,
            alert.balance,
            extra={"ctx_tenant": alert.tenant_id, "ctx_alert": alert.kind},
        )


class WebhookNotifier:
    """POST alerts as JSON to a webhook. Delivery problems are logged only."""

    def __init__(self, url: str, timeout: float = 5.0, session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def notify(self, alert: BalanceAlert) -> None:
        try:
            response = self._session.post(self.url, json=asdict(alert), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Failed to deliver %s alert for tenant %s: %s", alert.kind, alert.tenant_id, exc)
            return
        logger.info("Delivered %s alert for tenant %s", alert.kind, alert.tenant_id)


def crossed_thresholds(previous_balance: int, balance: int, low_threshold: int) -> list[tuple[str, int]]:
    """Thresholds crossed downward by a single balance change.

    Each threshold fires only on the change that takes the balance from above
    it to at or below it, so repeated deductions under a threshold stay quiet.
    """
    crossed: list[tuple[str, int]] = []
    if previous_balance > low_threshold >= balance:
        crossed.append((LOW, low_threshold))
    if previous_balance > 0 and balance == 0:
        crossed.append((ZERO, 0))
    return crossed


__all__ = ["BalanceAlert", "Notifier", "LogNotifier", "WebhookNotifier", "crossed_thresholds", "ZERO", "LOW"]
