"""Answer generation through an OpenAI-compatible chat completions API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import openai

from tenant_rag.core.config import Settings
from tenant_rag.core.errors import GenerationServiceFailure
from tenant_rag.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Generation:
    """Generated text plus token usage; usage is ``None`` when the provider omits it."""

    text: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    @property
    def total_tokens(self) -> int | None:
        if self.prompt_tokens is None or self.completion_tokens is None:
            return None
        return self.prompt_tokens + self.completion_tokens


class GenerationClient(Protocol):
    def generate(self, system_prompt: str, user_message: str, temperature: float = 0.1) -> Generation:
        ...


class OpenAIGenerationClient:
    def __init__(
        self,
        model: str = "gpt-4o-mini",
        max_tokens: int = 500,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: openai.OpenAI | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client
        self._client_kwargs = {"api_key": api_key, "base_url": base_url, "timeout": timeout, "max_retries": 0}

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            self._client = openai.OpenAI(**self._client_kwargs)
        return self._client

    def generate(self, system_prompt: str, user_message: str, temperature: float = 0.1) -> Generation:
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                temperature=temperature,
                max_tokens=self.max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise GenerationServiceFailure("Generation request timed out", provider_name="openai") from exc
        except openai.OpenAIError as exc:
            raise GenerationServiceFailure(f"Generation request failed: {exc}", provider_name="openai") from exc
        if not response.choices:
            raise GenerationServiceFailure("Generation returned no choices", provider_name="openai")
        text = response.choices[0].message.content or ""
        usage = response.usage
        if usage is None:
            logger.warning("Generation response for %s carried no usage", self.model)
            return Generation(text=text)
        logger.debug("Generated answer: prompt=%s completion=%s", usage.prompt_tokens, usage.completion_tokens)
        return Generation(text=text, prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)


def build_generation_client(settings: Settings) -> GenerationClient:
    return OpenAIGenerationClient(
        model=settings.generation_model,
        max_tokens=settings.generation_max_tokens,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.generation_timeout,
    )


__all__ = ["Generation", "GenerationClient", "OpenAIGenerationClient", "build_generation_client"]
