"""Text extraction for uploaded files and fetched pages."""

from __future__ import annotations

import io
import mimetypes

import fitz  # PyMuPDF
from bs4 import BeautifulSoup
from docx import Document
from markdown_it import MarkdownIt

from tenant_rag.core.errors import ExtractionFailure, ExtractionTooShort, UnsupportedFormat
from tenant_rag.ingest.types import ExtractedText
from tenant_rag.utils.text import normalize

PDF_TYPE = "application/pdf"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_TYPE = "text/plain"
MARKDOWN_TYPE = "text/markdown"
HTML_TYPE = "text/html"

FILE_MIN_CHARS = 50
PAGE_MIN_CHARS = 100

# Elements that never carry page content worth indexing.
_BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe", "svg")

_MD = MarkdownIt()

mimetypes.add_type(MARKDOWN_TYPE, ".md")
mimetypes.add_type(DOCX_TYPE, ".docx")


class BaseExtractor:
    """Common extractor interface."""

    content_types: tuple[str, ...] = ()

    def can_extract(self, content_type: str) -> bool:
        return content_type in self.content_types

    def extract(self, data: bytes) -> ExtractedText:  # pragma: no cover - interface
        raise NotImplementedError


class PlainTextExtractor(BaseExtractor):
    content_types = (TEXT_TYPE,)

    def extract(self, data: bytes) -> ExtractedText:
        text = data.decode("utf-8", errors="ignore")
        return ExtractedText(text=normalize(text), content_type=TEXT_TYPE)


class MarkdownExtractor(BaseExtractor):
    content_types = (MARKDOWN_TYPE, "text/x-markdown")

    def extract(self, data: bytes) -> ExtractedText:
        source = data.decode("utf-8", errors="ignore")
        parts = [part.strip() for part in _markdown_blocks(source) if part.strip()]
        text = normalize("\n".join(parts) if parts else source)
        return ExtractedText(text=text, content_type=MARKDOWN_TYPE)


def _markdown_blocks(source: str) -> list[str]:
    """Plain text of each rendered block; emphasis and link markup is dropped."""
    blocks: list[str] = []
    for token in _MD.parse(source):
        if token.type == "inline":
            blocks.append("".join(_inline_text(child) for child in token.children or ()))
        elif token.type in ("code_block", "fence"):
            blocks.append(token.content)
    return blocks


def _inline_text(token) -> str:
    if token.type in ("text", "code_inline", "image"):
        return token.content
    if token.type in ("softbreak", "hardbreak"):
        return " "
    return ""


class PDFExtractor(BaseExtractor):
    content_types = (PDF_TYPE,)

    def extract(self, data: bytes) -> ExtractedText:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text", sort=True) for page in doc]
                title = (doc.metadata or {}).get("title") or None
        except (RuntimeError, ValueError) as exc:
            raise ExtractionFailure(f"Could not read PDF: {exc}", provider_name="pymupdf") from exc
        return ExtractedText(
            text=normalize("\n\n".join(pages)),
            content_type=PDF_TYPE,
            title=title,
            page_count=len(pages),
        )


class DocxExtractor(BaseExtractor):
    content_types = (DOCX_TYPE,)

    def extract(self, data: bytes) -> ExtractedText:
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:  # python-docx raises zipfile/KeyError/ValueError variants
            raise ExtractionFailure(f"Could not read DOCX: {exc}", provider_name="python-docx") from exc
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        return ExtractedText(
            text=normalize("\n".join(paragraphs)),
            content_type=DOCX_TYPE,
            title=document.core_properties.title or None,
        )


class ExtractorRegistry:
    """Registry that selects an extractor for a declared content type."""

    def __init__(self) -> None:
        self._extractors: list[BaseExtractor] = [
            PDFExtractor(),
            DocxExtractor(),
            PlainTextExtractor(),
            MarkdownExtractor(),
        ]

    def for_content_type(self, content_type: str) -> BaseExtractor | None:
        for extractor in self._extractors:
            if extractor.can_extract(content_type):
                return extractor
        return None

    def extract(self, data: bytes, content_type: str) -> ExtractedText:
        declared = canonical_content_type(content_type)
        extractor = self.for_content_type(declared)
        if extractor is None:
            raise UnsupportedFormat(f"Unsupported file type: {content_type or 'unknown'}")
        return extractor.extract(data)


_REGISTRY = ExtractorRegistry()


def canonical_content_type(content_type: str | None) -> str:
    """Drop parameters such as ``; charset=utf-8`` and lower-case the type."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def guess_content_type(file_name: str, declared: str | None = None) -> str:
    """Prefer a declared type; fall back to the file suffix for generic uploads."""
    canonical = canonical_content_type(declared)
    if canonical and canonical != "application/octet-stream":
        return canonical
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or canonical or "application/octet-stream"


def extract_file_text(
    data: bytes,
    content_type: str,
    min_chars: int = FILE_MIN_CHARS,
    registry: ExtractorRegistry | None = None,
) -> ExtractedText:
    """Extract normalized text from uploaded bytes, enforcing the length floor."""
    extracted = (registry or _REGISTRY).extract(data, content_type)
    if len(extracted.text) < min_chars:
        raise ExtractionTooShort(
            f"Extracted text is too short or empty ({len(extracted.text)} < {min_chars} characters)"
        )
    return extracted


def extract_page_text(html: str, url: str, min_chars: int = PAGE_MIN_CHARS) -> ExtractedText:
    """Strip markup and boilerplate from a fetched page."""
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    for tag in soup.find_all(list(_BOILERPLATE_TAGS)):
        tag.decompose()
    root = soup.body or soup
    text = normalize(root.get_text(" "))
    if len(text) < min_chars:
        raise ExtractionTooShort(f"Scraped content too short ({len(text)} < {min_chars} characters)")
    return ExtractedText(text=text, content_type=HTML_TYPE, title=title or url, page_count=1)


__all__ = [
    "BaseExtractor",
    "ExtractorRegistry",
    "PDF_TYPE",
    "DOCX_TYPE",
    "TEXT_TYPE",
    "MARKDOWN_TYPE",
    "HTML_TYPE",
    "canonical_content_type",
    "guess_content_type",
    "extract_file_text",
    "extract_page_text",
]
