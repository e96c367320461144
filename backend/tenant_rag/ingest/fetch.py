"""Single-page fetcher for website sources."""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urlparse

import requests

from tenant_rag.core.errors import ExtractionFailure, ValidationError
from tenant_rag.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; tenant-rag/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class PageFetcher(Protocol):
    def fetch(self, url: str) -> str:
        ...


def validate_url(url: str) -> str:
    """Return the trimmed URL or raise when it is not an absolute http(s) URL."""
    candidate = url.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValidationError(f"Only absolute http(s) URLs can be added: {url!r}")
    return candidate


class HttpPageFetcher:
    """Fetch one HTML page with ``requests`` under a bounded timeout."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: requests.Session | None = None) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(DEFAULT_HEADERS)

    def fetch(self, url: str) -> str:
        try:
            response = self._session.get(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.Timeout as exc:
            raise ExtractionFailure(f"Timeout fetching {url}", provider_name="fetcher") from exc
        except requests.HTTPError as exc:
            raise ExtractionFailure(
                f"HTTP {exc.response.status_code} for {url}", provider_name="fetcher"
            ) from exc
        except requests.RequestException as exc:
            raise ExtractionFailure(f"Could not fetch {url}: {exc}", provider_name="fetcher") from exc
        logger.info("Fetched %s (%s bytes)", url, len(response.content))
        return response.text


__all__ = ["PageFetcher", "HttpPageFetcher", "validate_url"]
