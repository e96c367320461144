"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "TRAG_"
DEFAULT_CONFIG_PATH = Path("~/.config/tenant-rag/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "blob_dir"): "blob_dir",
    ("openai", "api_key"): "openai_api_key",
    ("openai", "base_url"): "openai_base_url",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "concurrency"): "embedding_concurrency",
    ("embeddings", "timeout"): "embedding_timeout",
    ("generation", "model"): "generation_model",
    ("generation", "temperature"): "generation_temperature",
    ("generation", "max_tokens"): "generation_max_tokens",
    ("generation", "timeout"): "generation_timeout",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("retrieval", "top_k"): "retrieval_top_k",
    ("extraction", "fetch_timeout"): "fetch_timeout",
    ("extraction", "file_min_chars"): "file_min_chars",
    ("extraction", "page_min_chars"): "page_min_chars",
    ("extraction", "max_upload_bytes"): "max_upload_bytes",
    ("limits", "max_file_sources"): "max_file_sources",
    ("limits", "rate_limit_max"): "rate_limit_max",
    ("limits", "rate_limit_window"): "rate_limit_window",
    ("ledger", "file_ingest_tokens"): "file_ingest_tokens",
    ("ledger", "website_ingest_tokens"): "website_ingest_tokens",
    ("ledger", "chat_min_tokens"): "chat_min_tokens",
    ("ledger", "chat_fallback_tokens"): "chat_fallback_tokens",
    ("ledger", "cached_answer_tokens"): "cached_answer_tokens",
    ("ledger", "low_balance_threshold"): "low_balance_threshold",
    ("ledger", "notify_webhook_url"): "notify_webhook_url",
    ("cache", "enabled"): "cache_enabled",
    ("cache", "ttl_seconds"): "cache_ttl_seconds",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".tenant-rag" / "tenant_rag.db")
    blob_dir: Path = Field(default=Path.home() / ".tenant-rag" / "blobs")

    openai_api_key: str | None = None
    openai_base_url: str | None = None

    embedding_backend: Literal["openai", "hashed"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, gt=0)
    embedding_concurrency: int = Field(default=4, ge=1, le=16)
    embedding_timeout: float = Field(default=30.0, gt=0)

    generation_model: str = "gpt-4o-mini"
    generation_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    generation_max_tokens: int = Field(default=500, gt=0)
    generation_timeout: float = Field(default=30.0, gt=0)

    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    retrieval_top_k: int = Field(default=5, ge=1, le=50)

    fetch_timeout: float = Field(default=10.0, gt=0)
    file_min_chars: int = 50
    page_min_chars: int = 100
    max_upload_bytes: int = 10 * 1024 * 1024

    max_file_sources: int = 5
    rate_limit_max: int = Field(default=5, ge=1)
    rate_limit_window: float = Field(default=60.0, gt=0)

    file_ingest_tokens: int = 10_000
    website_ingest_tokens: int = 5_000
    chat_min_tokens: int = 100
    chat_fallback_tokens: int = 500
    cached_answer_tokens: int = 900
    low_balance_threshold: int = 10_000
    notify_webhook_url: str | None = None

    cache_enabled: bool = True
    cache_ttl_seconds: int = 7 * 24 * 60 * 60

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "blob_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with TRAG_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    if "openai_api_key" not in overrides and os.environ.get("OPENAI_API_KEY"):
        overrides["openai_api_key"] = os.environ["OPENAI_API_KEY"]
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
