"""Chat answering: manual overrides, cache, retrieval-augmented generation."""

from .cache import AnswerCache, CacheKey
from .generation import Generation, GenerationClient, OpenAIGenerationClient
from .manual_qa import ManualQARepository
from .orchestrator import ChatAnswer, ChatOrchestrator
from .prompts import FALLBACK_ANSWER

__all__ = [
    "AnswerCache",
    "CacheKey",
    "ChatAnswer",
    "ChatOrchestrator",
    "FALLBACK_ANSWER",
    "Generation",
    "GenerationClient",
    "ManualQARepository",
    "OpenAIGenerationClient",
]
