"""Blob storage for raw uploads and extracted text."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Protocol

from tenant_rag.core.errors import StorageFailure, ValidationError
from tenant_rag.core.logging import get_logger
from tenant_rag.utils.ids import new_id
from tenant_rag.utils.text import slugify
from tenant_rag.utils.time import now_ms

logger = get_logger(__name__)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str:
        ...

    def delete(self, key: str) -> None:
        ...


class LocalBlobStore:
    """Blob store backed by a directory tree; keys are relative POSIX paths."""

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageFailure(f"Could not write blob {key}: {exc}", provider_name="blobs") from exc
        logger.debug("Stored blob %s (%s, %s bytes)", key, content_type, len(data))
        return key

    def get(self, key: str) -> bytes:
        try:
            return self._path_for(key).read_bytes()
        except FileNotFoundError as exc:
            raise StorageFailure(f"Blob {key} does not exist", provider_name="blobs") from exc
        except OSError as exc:
            raise StorageFailure(f"Could not read blob {key}: {exc}", provider_name="blobs") from exc

    def exists(self, key: str) -> bool:
        return self._path_for(key).exists()

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailure(f"Could not delete blob {key}: {exc}", provider_name="blobs") from exc
        logger.debug("Deleted blob %s", key)

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*relative.parts)


def upload_key(tenant_id: str, file_name: str) -> str:
    suffix = PurePosixPath(file_name).suffix.lstrip(".").lower() or "bin"
    return f"{tenant_id}/uploads/{new_id()}.{slugify(suffix, max_length=10)}"


def text_key(tenant_id: str) -> str:
    return f"{tenant_id}/text/{new_id()}.txt"


def website_key(tenant_id: str, url: str) -> str:
    return f"{tenant_id}/website/{slugify(url)}_{now_ms()}.txt"


__all__ = ["BlobStore", "LocalBlobStore", "upload_key", "text_key", "website_key"]
