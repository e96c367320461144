"""Tests for the token ledger, reservations and balance alerts."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from tenant_rag.core.errors import InsufficientTokens, ValidationError, ZeroBalance
from tenant_rag.ledger.notifications import LOW, ZERO, BalanceAlert, WebhookNotifier, crossed_thresholds
from tenant_rag.ledger.usage import UsageLedger, estimated_chats, tokens_for_amount


class RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[BalanceAlert] = []

    def notify(self, alert: BalanceAlert) -> None:
        self.alerts.append(alert)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def alerting_ledger(db, notifier) -> UsageLedger:
    return UsageLedger(db, low_balance_threshold=10_000, notifier=notifier)


def test_missing_or_empty_balance_is_zero_balance(ledger) -> None:
    with pytest.raises(ZeroBalance):
        ledger.check_and_reserve("nobody", 100)
    ledger.ensure_tenant("t1", opening_balance=0)
    with pytest.raises(ZeroBalance):
        ledger.check_and_reserve("t1", 100)


def test_insufficient_tokens_reports_amounts(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=50)
    with pytest.raises(InsufficientTokens) as exc_info:
        ledger.check_and_reserve("t1", 100)
    assert exc_info.value.required == 100
    assert exc_info.value.available == 50


def test_reservation_is_released_on_exit(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=1_000)
    with ledger.check_and_reserve("t1", 600):
        assert ledger.snapshot("t1").available == 400
        with pytest.raises(InsufficientTokens):
            ledger.check_and_reserve("t1", 600)
    assert ledger.snapshot("t1").reserved == 0
    assert ledger.balance("t1") == 1_000


def test_deduct_settles_reservation(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=1_000)
    with ledger.check_and_reserve("t1", 100) as reservation:
        assert ledger.deduct("t1", 350, "chat", "AI response", reservation=reservation) == 650
    snapshot = ledger.snapshot("t1")
    assert snapshot.reserved == 0
    assert snapshot.balance == 650


def test_deduct_clamps_at_zero_and_logs_usage(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=300)
    assert ledger.deduct("t1", 500, "chat", "AI response") == 0
    events = ledger.history("t1")
    assert [(event.kind, event.tokens, event.balance_after) for event in events] == [("chat", 500, 0)]


def test_unknown_usage_kind_is_rejected(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=300)
    with pytest.raises(ValidationError):
        ledger.deduct("t1", 10, "lunch")


def test_concurrent_deductions_never_go_negative(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=1_000)
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: ledger.deduct("t1", 30, "chat"), range(50)))
    assert ledger.balance("t1") == 0
    assert len(ledger.history("t1", limit=100)) == 50


def test_concurrent_reservations_cannot_overcommit(ledger) -> None:
    ledger.ensure_tenant("t1", opening_balance=150)

    def attempt(_: int) -> bool:
        try:
            ledger.check_and_reserve("t1", 100)
        except InsufficientTokens:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))
    assert outcomes.count(True) == 1
    assert ledger.snapshot("t1").reserved == 100


def test_low_threshold_fires_once_on_crossing(alerting_ledger, notifier) -> None:
    alerting_ledger.ensure_tenant("t1", opening_balance=12_000)
    alerting_ledger.deduct("t1", 3_000, "chat")
    alerting_ledger.deduct("t1", 1_000, "chat")
    assert [(alert.kind, alert.previous_balance, alert.balance) for alert in notifier.alerts] == [
        (LOW, 12_000, 9_000)
    ]


def test_zero_threshold_fires_once(alerting_ledger, notifier) -> None:
    alerting_ledger.ensure_tenant("t1", opening_balance=5_000)
    alerting_ledger.deduct("t1", 6_000, "chat")
    alerting_ledger.deduct("t1", 100, "chat")
    assert [alert.kind for alert in notifier.alerts] == [ZERO]


def test_single_drop_past_both_thresholds_fires_both(alerting_ledger, notifier) -> None:
    alerting_ledger.ensure_tenant("t1", opening_balance=20_000)
    alerting_ledger.deduct("t1", 25_000, "upload")
    assert sorted(alert.kind for alert in notifier.alerts) == sorted([LOW, ZERO])


def test_recharge_rearms_threshold(alerting_ledger, notifier) -> None:
    alerting_ledger.ensure_tenant("t1", opening_balance=11_000)
    alerting_ledger.deduct("t1", 2_000, "chat")
    assert alerting_ledger.recharge("t1", 5_000) == 14_000
    alerting_ledger.deduct("t1", 5_000, "chat")
    assert [alert.kind for alert in notifier.alerts] == [LOW, LOW]


def test_crossed_thresholds_is_edge_triggered() -> None:
    assert crossed_thresholds(12_000, 9_000, 10_000) == [(LOW, 10_000)]
    assert crossed_thresholds(9_000, 8_000, 10_000) == []
    assert crossed_thresholds(10_000, 9_000, 10_000) == []
    assert crossed_thresholds(100, 0, 10_000) == [(ZERO, 0)]
    assert crossed_thresholds(0, 0, 10_000) == []


def test_recharge_creates_tenant_and_records_event(ledger) -> None:
    assert ledger.recharge("fresh", 2_500) == 2_500
    assert ledger.history("fresh")[0].kind == "recharge"
    with pytest.raises(ValidationError):
        ledger.recharge("fresh", 0)


def test_tokens_for_amount_bonus_tiers() -> None:
    assert tokens_for_amount(100) == 250_000
    assert tokens_for_amount(199) == 199 * 2500 * 105 // 100
    assert tokens_for_amount(499) == 499 * 2500 * 110 // 100
    assert tokens_for_amount(999) == 999 * 2500 * 115 // 100
    with pytest.raises(ValidationError):
        tokens_for_amount(0)


def test_estimated_chats() -> None:
    assert estimated_chats(25_000) == 13
    assert estimated_chats(0) == 0


def test_webhook_failures_are_logged_not_raised() -> None:
    import requests

    class BrokenSession:
        def post(self, *args, **kwargs):
            raise requests.ConnectionError("refused")

    notifier = WebhookNotifier("http://hooks.invalid/alert", session=BrokenSession())
    notifier.notify(BalanceAlert("t1", LOW, 10_000, 12_000, 9_000))
