"""Prompt text for context-only answering."""

from __future__ import annotations

from typing import Sequence

FALLBACK_ANSWER = "I don't have this information yet."

CONTEXT_SEPARATOR = "\n\n---\n\n"

SYSTEM_PROMPT_TEMPLATE = """You are an AI assistant for a specific business.
You must ONLY answer based on the provided context below.
If the answer is not in the context, say "{fallback}"
Do not make things up or use outside knowledge.

Context:
{context}"""


def build_system_prompt(chunk_texts: Sequence[str]) -> str:
    """System prompt that makes the retrieved chunks the only knowledge."""
    context = CONTEXT_SEPARATOR.join(text.strip() for text in chunk_texts if text.strip())
    return SYSTEM_PROMPT_TEMPLATE.format(fallback=FALLBACK_ANSWER, context=context)


__all__ = ["FALLBACK_ANSWER", "build_system_prompt"]
