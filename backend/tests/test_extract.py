"""Tests for text extraction."""

import io

import pytest
from docx import Document

from tenant_rag.core.errors import ExtractionTooShort, UnsupportedFormat, ValidationError
from tenant_rag.ingest.extract import (
    DOCX_TYPE,
    MARKDOWN_TYPE,
    TEXT_TYPE,
    extract_file_text,
    extract_page_text,
    guess_content_type,
)
from tenant_rag.ingest.fetch import validate_url

from conftest import PAGE_HTML


def test_plain_text_is_whitespace_collapsed() -> None:
    data = b"Line one   of the document.\n\n\tLine two continues with more words here."
    extracted = extract_file_text(data, TEXT_TYPE)
    assert extracted.text == "Line one of the document. Line two continues with more words here."


def test_short_file_text_is_rejected() -> None:
    with pytest.raises(ExtractionTooShort):
        extract_file_text(b"too short", TEXT_TYPE)


def test_unsupported_type_is_a_validation_error() -> None:
    with pytest.raises(UnsupportedFormat) as exc_info:
        extract_file_text(b"\x89PNG....", "image/png")
    assert isinstance(exc_info.value, ValidationError)


def test_docx_paragraphs_are_extracted() -> None:
    document = Document()
    document.add_paragraph("Warranty covers manufacturing defects for two years.")
    document.add_paragraph("Accidental damage is not covered by the warranty.")
    buffer = io.BytesIO()
    document.save(buffer)
    extracted = extract_file_text(buffer.getvalue(), DOCX_TYPE)
    assert "manufacturing defects" in extracted.text
    assert "Accidental damage" in extracted.text


def test_markdown_is_rendered_to_text() -> None:
    data = b"# Delivery\n\nWe deliver **every weekday** to all addresses inside the city limits."
    extracted = extract_file_text(data, MARKDOWN_TYPE)
    assert "**" not in extracted.text
    assert "every weekday" in extracted.text


def test_page_text_drops_boilerplate() -> None:
    extracted = extract_page_text(PAGE_HTML, "https://shop.example/hours")
    assert extracted.title == "Opening Hours"
    assert "Saturdays" in extracted.text
    assert "tracking" not in extracted.text
    assert "Copyright" not in extracted.text
    assert extracted.page_count == 1


def test_short_page_is_rejected() -> None:
    with pytest.raises(ExtractionTooShort):
        extract_page_text("<html><body><p>Hi</p></body></html>", "https://a.example")


def test_content_type_guessing() -> None:
    assert guess_content_type("notes.md", "application/octet-stream") == MARKDOWN_TYPE
    assert guess_content_type("doc.txt", "text/plain; charset=utf-8") == TEXT_TYPE


def test_only_http_urls_are_accepted() -> None:
    assert validate_url(" https://example.com/page ") == "https://example.com/page"
    with pytest.raises(ValidationError):
        validate_url("ftp://example.com/file")
