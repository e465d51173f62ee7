"""Tests for format dispatch in the document parser."""
import pytest

from barkly.models.database_models import ExtractionMethod
from barkly.services.document_parser import DocumentParser
from tests.conftest import PUBLIC_TEXT, make_pdf


@pytest.mark.asyncio
async def test_parse_plain_text():
    parsed = await DocumentParser().parse_document(PUBLIC_TEXT.encode("utf-8"), "notes.txt")

    assert parsed.method == ExtractionMethod.PLAIN_TEXT
    assert parsed.full_text == PUBLIC_TEXT
    assert parsed.page_count == 1
    assert parsed.word_count == len(PUBLIC_TEXT.split())
    assert parsed.metadata["file_type"] == "txt"
    assert parsed.metadata["detected_language"] == "en"
    assert parsed.metadata["reading_time_minutes"] > 0
    assert parsed.warnings == []


@pytest.mark.asyncio
async def test_parse_markdown_keeps_lines():
    body = "# Notes\n\n\n\nFirst line   with   spaces\r\nSecond line"
    parsed = await DocumentParser().parse_document(body.encode("utf-8"), "notes.md")

    assert parsed.full_text == "# Notes\n\nFirst line with spaces\nSecond line"
    assert parsed.metadata["detected_language"] == "unknown"


@pytest.mark.asyncio
async def test_parse_invalid_utf8_warns():
    parsed = await DocumentParser().parse_document("Café menu".encode("latin-1"), "menu.txt")

    assert "menu" in parsed.full_text
    assert parsed.warnings == ["File is not valid UTF-8; undecodable bytes were replaced"]


@pytest.mark.asyncio
async def test_parse_pdf_reports_page_breaks():
    parsed = await DocumentParser().parse_document(make_pdf([PUBLIC_TEXT, PUBLIC_TEXT]), "report.pdf")

    assert parsed.method == ExtractionMethod.PYMUPDF
    assert parsed.page_count == 2
    assert len(parsed.page_breaks) == 2
    assert parsed.metadata["file_type"] == "pdf"


@pytest.mark.asyncio
async def test_parse_unsupported_type():
    with pytest.raises(ValueError, match="Unsupported file type"):
        await DocumentParser().parse_document(b"a,b,c", "table.csv")


@pytest.mark.asyncio
async def test_parse_empty_text_file():
    parsed = await DocumentParser().parse_document(b"   \n  ", "blank.txt")

    assert parsed.full_text == ""
    assert parsed.method == ExtractionMethod.FAILED
    assert parsed.confidence == 0.0
