"""Tests for the chat orchestrator."""

import pytest

from tenant_rag.chat.cache import AnswerCache, CacheKey
from tenant_rag.chat.manual_qa import ManualQARepository
from tenant_rag.chat.orchestrator import CACHE, FALLBACK, GENERATED, MANUAL, ChatOrchestrator
from tenant_rag.chat.prompts import FALLBACK_ANSWER
from tenant_rag.core.errors import GenerationServiceFailure, RateLimitExceeded, ValidationError, ZeroBalance
from tenant_rag.ledger.rate_limit import RateLimiter
from tenant_rag.retrieval.search import Retriever

from conftest import FakeGenerator


class RecordingRetriever(Retriever):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.queries: list[tuple[str, str]] = []

    def retrieve(self, tenant_id: str, query_text: str, k: int | None = None):
        self.queries.append((tenant_id, query_text))
        return super().retrieve(tenant_id, query_text, k)


@pytest.fixture
def retriever(vector_store, embedder) -> RecordingRetriever:
    return RecordingRetriever(vector_store, embedder, top_k=5)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator(text="We open at nine.", prompt_tokens=300, completion_tokens=50)


@pytest.fixture
def manual_qa(db) -> ManualQARepository:
    return ManualQARepository(db)


@pytest.fixture
def cache(db) -> AnswerCache:
    return AnswerCache(db)


@pytest.fixture
def orchestrator(db, ledger, manual_qa, retriever, generator, cache) -> ChatOrchestrator:
    return ChatOrchestrator(
        ledger=ledger,
        rate_limiter=RateLimiter(db, max_requests=100, window_seconds=60),
        manual_qa=manual_qa,
        retriever=retriever,
        generator=generator,
        cache=cache,
    )


@pytest.fixture
def indexed_tenant(pipeline, ledger) -> str:
    ledger.ensure_tenant("t1", opening_balance=50_000)
    pipeline.ingest_website("t1", "https://shop.example/hours")
    return "t1"


def test_manual_answer_wins_and_is_free(
    orchestrator, manual_qa, ledger, retriever, generator, indexed_tenant
) -> None:
    entry = manual_qa.create("t1", "What are your hours?", "Nine to six on weekdays.")
    balance = ledger.balance("t1")

    answer = orchestrator.chat("t1", "  what ARE your hours?  ")
    assert (answer.answer, answer.origin, answer.tokens_charged) == ("Nine to six on weekdays.", MANUAL, 0)
    assert answer.balance == balance
    assert retriever.queries == []
    assert generator.calls == []
    assert manual_qa.get("t1", entry.id).frequency == 1

    orchestrator.chat("t1", "When do you open on Saturdays?")
    assert retriever.queries == [("t1", "When do you open on Saturdays?")]


def test_empty_knowledge_falls_back_without_charge(orchestrator, ledger, generator) -> None:
    ledger.ensure_tenant("t1", opening_balance=5_000)
    answer = orchestrator.chat("t1", "Do you ship abroad?")
    assert answer.answer == FALLBACK_ANSWER
    assert answer.origin == FALLBACK
    assert answer.tokens_charged == 0
    assert ledger.balance("t1") == 5_000
    assert ledger.snapshot("t1").reserved == 0
    assert generator.calls == []


def test_generated_answer_uses_context_and_is_metered(orchestrator, ledger, generator, indexed_tenant) -> None:
    before = ledger.balance("t1")
    answer = orchestrator.chat("t1", "When do you open on Saturdays?")

    assert answer.origin == GENERATED
    assert answer.answer == "We open at nine."
    assert answer.tokens_charged == 350
    assert ledger.balance("t1") == before - 350 == answer.balance
    assert answer.source_ids
    system_prompt, user_message, temperature = generator.calls[0]
    assert "Saturdays" in system_prompt
    assert FALLBACK_ANSWER in system_prompt
    assert user_message == "When do you open on Saturdays?"
    assert temperature == pytest.approx(0.1)


def test_missing_usage_charges_flat_amount(orchestrator, ledger, generator, indexed_tenant) -> None:
    generator.prompt_tokens = None
    before = ledger.balance("t1")
    answer = orchestrator.chat("t1", "When do you open on Saturdays?")
    assert answer.tokens_charged == 500
    assert ledger.balance("t1") == before - 500


def test_repeat_question_is_served_from_cache(orchestrator, ledger, generator, indexed_tenant) -> None:
    orchestrator.chat("t1", "When do you open on Saturdays?")
    before = ledger.balance("t1")
    answer = orchestrator.chat("t1", "when do you open on saturdays?")
    assert answer.origin == CACHE
    assert answer.tokens_charged == 900
    assert ledger.balance("t1") == before - 900
    assert len(generator.calls) == 1


def test_new_knowledge_invalidates_cache(orchestrator, pipeline, generator, indexed_tenant, sample_text) -> None:
    orchestrator.chat("t1", "When do you open on Saturdays?")
    pipeline.ingest_file("t1", "policy.txt", sample_text.encode(), "text/plain")
    answer = orchestrator.chat("t1", "When do you open on Saturdays?")
    assert answer.origin == GENERATED
    assert len(generator.calls) == 2


def test_generation_failure_charges_nothing(orchestrator, ledger, generator, indexed_tenant) -> None:
    generator.fail = True
    before = ledger.balance("t1")
    with pytest.raises(GenerationServiceFailure):
        orchestrator.chat("t1", "When do you open on Saturdays?")
    assert ledger.balance("t1") == before
    assert ledger.snapshot("t1").reserved == 0


def test_zero_balance_blocks_chat(orchestrator) -> None:
    with pytest.raises(ZeroBalance):
        orchestrator.chat("broke", "hello?")


def test_rate_limit_is_checked_first(db, ledger, manual_qa, vector_store, embedder, generator) -> None:
    limited = ChatOrchestrator(
        ledger=ledger,
        rate_limiter=RateLimiter(db, max_requests=1, window_seconds=60),
        manual_qa=manual_qa,
        retriever=Retriever(vector_store, embedder),
        generator=generator,
    )
    ledger.ensure_tenant("t1", opening_balance=5_000)
    limited.chat("t1", "first")
    with pytest.raises(RateLimitExceeded):
        limited.chat("t1", "second")


def test_blank_message_is_rejected(orchestrator) -> None:
    with pytest.raises(ValidationError):
        orchestrator.chat("t1", "   ")


def test_cache_entries_expire(cache) -> None:
    key = CacheKey.for_message("t1", "Hello", knowledge_version=3)
    cache.put(key, "cached", now=1_000)
    assert cache.get(CacheKey.for_message("t1", " hello ", 3), now=2_000) == "cached"
    assert cache.get(CacheKey.for_message("t1", "hello", 4), now=2_000) is None
    assert cache.get(key, now=1_000 + cache.ttl_ms + 1) is None
    assert cache.purge_expired(now=1_000 + cache.ttl_ms + 1) == 1
