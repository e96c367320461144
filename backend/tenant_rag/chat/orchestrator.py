"""Chat request handling: guard, override, cache, retrieve, generate, meter."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from tenant_rag.chat.cache import AnswerCache, CacheKey
from tenant_rag.chat.generation import GenerationClient
from tenant_rag.chat.manual_qa import ManualQARepository
from tenant_rag.chat.prompts import FALLBACK_ANSWER, build_system_prompt
from tenant_rag.core.errors import QuotaExceeded, ValidationError
from tenant_rag.core.logging import get_logger
from tenant_rag.core.metrics import CHAT_REJECTIONS, CHAT_REQUESTS
from tenant_rag.ledger.rate_limit import RateLimiter
from tenant_rag.ledger.usage import Reservation, UsageLedger
from tenant_rag.retrieval.search import Retriever

logger = get_logger(__name__)

MANUAL = "manual"
CACHE = "cache"
FALLBACK = "fallback"
GENERATED = "generated"


@dataclass(frozen=True, slots=True)
class ChatAnswer:
    answer: str
    origin: str
    tokens_charged: int
    balance: int
    source_ids: tuple[str, ...] = field(default_factory=tuple)


class ChatOrchestrator:
    """Answer one tenant message.

    Order of checks: rate window, balance hold, manual Q&A, answer cache,
    retrieval. Manual answers and the no-knowledge fallback are free; a
    cached answer costs a flat amount; a generated answer costs the tokens
    the model reports (``fallback_tokens`` when it reports none).
    """

    def __init__(
        self,
        ledger: UsageLedger,
        rate_limiter: RateLimiter,
        manual_qa: ManualQARepository,
        retriever: Retriever,
        generator: GenerationClient,
        cache: AnswerCache | None = None,
        min_tokens: int = 100,
        fallback_tokens: int = 500,
        cached_answer_tokens: int = 900,
        temperature: float = 0.1,
    ) -> None:
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self.manual_qa = manual_qa
        self.retriever = retriever
        self.generator = generator
        self.cache = cache
        self.min_tokens = min_tokens
        self.fallback_tokens = fallback_tokens
        self.cached_answer_tokens = cached_answer_tokens
        self.temperature = temperature

    def chat(self, tenant_id: str, message: str) -> ChatAnswer:
        message = message.strip()
        if not message:
            raise ValidationError("Message must not be empty")
        start = time.perf_counter()
        reservation = self._admit(tenant_id)
        with reservation:
            answer = self._answer(tenant_id, message, reservation)
        CHAT_REQUESTS.labels(origin=answer.origin).inc()
        logger.info(
            "Answered chat for tenant %s via %s in %.3fs",
            tenant_id,
            answer.origin,
            time.perf_counter() - start,
            extra={"ctx_tenant": tenant_id, "ctx_origin": answer.origin, "ctx_tokens": answer.tokens_charged},
        )
        return answer

    def _admit(self, tenant_id: str) -> Reservation:
        try:
            self.rate_limiter.allow_burst(tenant_id)
            return self.ledger.check_and_reserve(tenant_id, self.min_tokens)
        except QuotaExceeded as exc:
            CHAT_REJECTIONS.labels(reason=exc.code).inc()
            raise

    def _answer(self, tenant_id: str, message: str, reservation: Reservation) -> ChatAnswer:
        entry = self.manual_qa.match(tenant_id, message)
        if entry is not None:
            return ChatAnswer(entry.answer, MANUAL, 0, self.ledger.balance(tenant_id))

        cache_key = None
        if self.cache is not None:
            cache_key = CacheKey.for_message(tenant_id, message, self.ledger.knowledge_version(tenant_id))
            cached = self.cache.get(cache_key)
            if cached is not None:
                balance = self.ledger.deduct(
                    tenant_id,
                    self.cached_answer_tokens,
                    "chat_cached",
                    "Cached AI response",
                    reservation=reservation,
                )
                return ChatAnswer(cached, CACHE, self.cached_answer_tokens, balance)

        hits = self.retriever.retrieve(tenant_id, message)
        if not hits:
            return ChatAnswer(FALLBACK_ANSWER, FALLBACK, 0, self.ledger.balance(tenant_id))

        generation = self.generator.generate(
            build_system_prompt([hit.text for hit in hits]),
            message,
            temperature=self.temperature,
        )
        cost = generation.total_tokens
        if cost is None:
            cost = self.fallback_tokens
        balance = self.ledger.deduct(tenant_id, cost, "chat", "AI response", reservation=reservation)
        if cache_key is not None:
            self.cache.put(cache_key, generation.text)
        source_ids = tuple(dict.fromkeys(hit.source_id for hit in hits))
        return ChatAnswer(generation.text, GENERATED, cost, balance, source_ids)


__all__ = ["ChatOrchestrator", "ChatAnswer", "MANUAL", "CACHE", "FALLBACK", "GENERATED"]
