"""Token metering, rate limiting and balance alerts."""

from .notifications import LogNotifier, Notifier, WebhookNotifier
from .rate_limit import RateLimiter
from .usage import Reservation, UsageLedger, estimated_chats, tokens_for_amount

__all__ = [
    "UsageLedger",
    "Reservation",
    "RateLimiter",
    "Notifier",
    "LogNotifier",
    "WebhookNotifier",
    "tokens_for_amount",
    "estimated_chats",
]
