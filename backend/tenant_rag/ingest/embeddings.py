"""Embedding clients and the bounded-concurrency batch helper."""

from __future__ import annotations

import hashlib
import math
import re
from array import array
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol, Sequence

import openai

from tenant_rag.core.config import Settings
from tenant_rag.core.errors import EmbeddingServiceFailure
from tenant_rag.core.logging import get_logger
from tenant_rag.ingest.types import EmbeddedChunk

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingClient(Protocol):
    model_name: str

    @property
    def dim(self) -> int:
        ...

    def embed(self, text: str) -> list[float]:
        ...


class OpenAIEmbeddingClient:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        dim: int = 1536,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: openai.OpenAI | None = None,
    ) -> None:
        self.model_name = model_name
        self._dim = dim
        self._client = client
        self._client_kwargs = {"api_key": api_key, "base_url": base_url, "timeout": timeout, "max_retries": 0}

    @property
    def dim(self) -> int:
        return self._dim

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            self._client = openai.OpenAI(**self._client_kwargs)
        return self._client

    def embed(self, text: str) -> list[float]:
        try:
            response = self._get_client().embeddings.create(
                model=self.model_name,
                input=text,
                encoding_format="float",
            )
        except openai.APITimeoutError as exc:
            raise EmbeddingServiceFailure("Embedding request timed out", provider_name="openai") from exc
        except openai.OpenAIError as exc:
            raise EmbeddingServiceFailure(f"Embedding request failed: {exc}", provider_name="openai") from exc
        vector = list(response.data[0].embedding)
        if len(vector) != self._dim:
            raise EmbeddingServiceFailure(
                f"Expected {self._dim}-dimensional embedding, got {len(vector)}",
                provider_name="openai",
            )
        return vector


class HashedEmbeddingModel:
    """Lightweight hashed embedding model with deterministic output."""

    _instances: dict[tuple[str, int], "HashedEmbeddingModel"] = {}

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim

    @classmethod
    def get(cls, model_name: str = "hashed", dim: int = 384) -> "HashedEmbeddingModel":
        key = (model_name or "hashed", dim)
        if key not in cls._instances:
            cls._instances[key] = HashedEmbeddingModel(model_name=key[0], dim=dim)
        return cls._instances[key]

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in _tokenize(text):
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return vector


def build_embedding_client(settings: Settings) -> EmbeddingClient:
    """Select the embedding backend named in settings."""
    if settings.embedding_backend == "hashed":
        return HashedEmbeddingModel.get(settings.embedding_model, settings.embedding_dim)
    return OpenAIEmbeddingClient(
        model_name=settings.embedding_model,
        dim=settings.embedding_dim,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.embedding_timeout,
    )


def embed_chunks(
    client: EmbeddingClient,
    chunks: Sequence[str],
    concurrency: int = 4,
) -> list[EmbeddedChunk]:
    """Embed every chunk with at most ``concurrency`` requests in flight.

    Output order follows input order. The first failure cancels the calls
    that have not started yet and is raised as ``EmbeddingServiceFailure``.
    """
    if not chunks:
        return []
    workers = max(1, min(concurrency, len(chunks)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="embed") as pool:
        futures = [pool.submit(client.embed, chunk) for chunk in chunks]
        try:
            vectors = [future.result() for future in futures]
        except EmbeddingServiceFailure:
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        except Exception as exc:
            pool.shutdown(wait=False, cancel_futures=True)
            raise EmbeddingServiceFailure(f"Embedding failed: {exc}") from exc
    logger.debug("Embedded %s chunks with %s workers", len(chunks), workers)
    return [
        EmbeddedChunk(seq=seq, text=text, vector=tuple(vector))
        for seq, (text, vector) in enumerate(zip(chunks, vectors))
    ]


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(payload: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(payload)
    return list(floats)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingClient",
    "OpenAIEmbeddingClient",
    "HashedEmbeddingModel",
    "build_embedding_client",
    "embed_chunks",
    "vector_to_bytes",
    "vector_from_bytes",
]
