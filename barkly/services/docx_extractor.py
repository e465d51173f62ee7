"""
DOCX text extraction with fallback methods.

  1. python_docx   — body text in reading order with headings, list items
                     and tables, plus core-properties metadata
  2. raw_xml       — unzip word/document.xml (and headers/footers) and strip
                     the markup; used for files python-docx refuses to open
  3. buffer_parse  — regex over the raw bytes as a last resort

Like the PDF extractor, this never raises; unreadable files come back with
method ``failed``.
"""
from __future__ import annotations

import dataclasses
import html
import io
import logging
import re
import zipfile
from typing import Any, Dict, List, Optional

from docx import Document as DocxDocument
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from barkly.models.database_models import ExtractionMethod

logger = logging.getLogger(__name__)

PRIMARY_MIN_LENGTH = 100
LIMITED_CONTENT_LENGTH = 20
RAW_XML_MIN_LENGTH = 50
BUFFER_MIN_LENGTH = 20
RAW_XML_CONFIDENCE_CAP = 0.8
BUFFER_CONFIDENCE_CAP = 0.6

HEADING_STYLES: Dict[str, int] = {
    "title": 1,
    "heading 1": 1,
    "heading 2": 2,
    "heading 3": 3,
    "heading 4": 3,
    "heading 5": 3,
    "subtitle": 2,
}

# Vocabulary that signals real project/community content rather than noise
MEANINGFUL_PATTERNS = [
    re.compile(r"\b(community|service|program|initiative|development|support)\b", re.I),
    re.compile(r"\b(Barkly|Tennant Creek|youth|training|education)\b", re.I),
    re.compile(r"\b(outcome|indicator|strategy|plan|framework)\b", re.I),
]

_BUFFER_PATTERNS = [
    re.compile(r"<w:t[^>]*>([^<]+)</w:t>"),
    re.compile(r"[a-zA-Z]{3,}[\s\w]*[.!?]"),
    re.compile(r"\b(?:the|and|for|with|from|this|that|will|would|could|should)\b[\s\w]{10,}"),
]


@dataclasses.dataclass
class DocxFormatting:
    headers: List[str] = dataclasses.field(default_factory=list)
    tables: List[List[str]] = dataclasses.field(default_factory=list)
    lists: List[str] = dataclasses.field(default_factory=list)
    images: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class DOCXExtractionResult:
    text: str
    word_count: int
    method: ExtractionMethod
    confidence: float
    warnings: List[str] = dataclasses.field(default_factory=list)
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)
    formatting: Optional[DocxFormatting] = None


class EnhancedDOCXExtractor:
    """Extracts text from DOCX bytes, falling back through several methods."""

    def __init__(self, data: bytes) -> None:
        self.data = data

    def extract_text(self) -> DOCXExtractionResult:
        warnings: List[str] = []

        try:
            result = self._extract_with_python_docx()
            if len(result.text) > PRIMARY_MIN_LENGTH:
                result.warnings = warnings + result.warnings
                return result
            if len(result.text) > LIMITED_CONTENT_LENGTH:
                warnings.append("python-docx extraction produced limited content")
        except Exception as exc:
            logger.warning("python-docx extraction failed: %s", exc)
            warnings.append(f"python-docx extraction failed: {exc}")

        try:
            result = self._extract_with_raw_xml()
            if len(result.text) > RAW_XML_MIN_LENGTH:
                result.warnings = warnings + result.warnings
                return result
        except Exception as exc:
            logger.warning("Raw XML extraction failed: %s", exc)
            warnings.append(f"Raw XML extraction failed: {exc}")

        try:
            result = self._extract_with_buffer_analysis()
            result.warnings = warnings + result.warnings
            return result
        except Exception as exc:
            logger.warning("Buffer analysis failed: %s", exc)
            warnings.append(f"Buffer analysis failed: {exc}")

        logger.error("All DOCX extraction methods failed (%d bytes)", len(self.data))
        return DOCXExtractionResult(
            text="",
            word_count=0,
            method=ExtractionMethod.FAILED,
            confidence=0.0,
            warnings=warnings + ["All extraction methods failed"],
        )

    # ------------------------------------------------------------------
    # Method 1: python-docx
    # ------------------------------------------------------------------

    def _extract_with_python_docx(self) -> DOCXExtractionResult:
        doc = DocxDocument(io.BytesIO(self.data))
        formatting = DocxFormatting()
        parts: List[str] = []

        body = doc.element.body
        for child in body.iterchildren():
            if child.tag == qn("w:p"):
                para = Paragraph(child, doc)
                formatting.images += len(list(child.iter(qn("a:blip"))))
                line = self._paragraph_line(para, formatting)
                if line:
                    parts.append(line)
            elif child.tag == qn("w:tbl"):
                rows = _table_rows(Table(child, doc))
                if rows:
                    formatting.tables.append(rows)
                    parts.append("\n".join(rows))

        text = clean_extracted_text("\n\n".join(parts))
        core = doc.core_properties
        metadata = {
            "title": core.title or "",
            "author": core.author or "",
            "subject": core.subject or "",
            "keywords": core.keywords or "",
            "creation_date": core.created.isoformat() if core.created else "",
            "modification_date": core.modified.isoformat() if core.modified else "",
        }
        return DOCXExtractionResult(
            text=text,
            word_count=count_words(text),
            method=ExtractionMethod.PYTHON_DOCX,
            confidence=calculate_confidence(text, formatting),
            metadata=metadata,
            formatting=formatting,
        )

    @staticmethod
    def _paragraph_line(para: Paragraph, formatting: DocxFormatting) -> str:
        text = para.text.strip()
        if not text:
            return ""
        style_name = para.style.name.lower() if para.style is not None and para.style.name else ""

        level = HEADING_STYLES.get(style_name, 0)
        if level:
            formatting.headers.append(text)
            return f"{'#' * level} {text}"

        is_list = style_name.startswith("list") or (
            para._p.pPr is not None and para._p.pPr.numPr is not None
        )
        if is_list:
            formatting.lists.append(text)
            return f"- {text}"
        return text

    # ------------------------------------------------------------------
    # Method 2: raw XML
    # ------------------------------------------------------------------

    def _extract_with_raw_xml(self) -> DOCXExtractionResult:
        with zipfile.ZipFile(io.BytesIO(self.data)) as archive:
            names = archive.namelist()
            if "word/document.xml" not in names:
                raise ValueError("No word/document.xml found")
            body = _text_from_xml(archive.read("word/document.xml").decode("utf-8", errors="replace"))

            extras: List[str] = []
            for name in sorted(names):
                if name.startswith(("word/header", "word/footer")) and name.endswith(".xml"):
                    extras.append(
                        _text_from_xml(archive.read(name).decode("utf-8", errors="replace"))
                    )

        text = clean_extracted_text("\n\n".join([body] + [e for e in extras if e]))
        return DOCXExtractionResult(
            text=text,
            word_count=count_words(text),
            method=ExtractionMethod.RAW_XML,
            confidence=min(calculate_confidence(text), RAW_XML_CONFIDENCE_CAP),
            warnings=["Extracted using raw XML parsing - formatting may be limited"],
        )

    # ------------------------------------------------------------------
    # Method 3: buffer analysis
    # ------------------------------------------------------------------

    def _extract_with_buffer_analysis(self) -> DOCXExtractionResult:
        raw = self.data.decode("utf-8", errors="ignore")
        pieces: List[str] = []
        for pattern in _BUFFER_PATTERNS:
            for match in pattern.finditer(raw):
                pieces.append(match.group(1) if pattern.groups else match.group(0))

        text = clean_extracted_text(" ".join(pieces))
        if len(text) <= BUFFER_MIN_LENGTH:
            raise ValueError("Insufficient text content found in buffer analysis")
        return DOCXExtractionResult(
            text=text,
            word_count=count_words(text),
            method=ExtractionMethod.BUFFER_PARSE,
            confidence=min(calculate_confidence(text), BUFFER_CONFIDENCE_CAP),
            warnings=["Extracted using buffer analysis - content may be incomplete"],
        )


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def calculate_confidence(text: str, formatting: Optional[DocxFormatting] = None) -> float:
    """Score DOCX extraction quality from length, word count, structure and vocabulary."""
    confidence = 0.0

    if len(text) > 1000:
        confidence += 0.4
    elif len(text) > 500:
        confidence += 0.3
    elif len(text) > 100:
        confidence += 0.2
    elif len(text) > 20:
        confidence += 0.1

    words = count_words(text)
    if words > 200:
        confidence += 0.3
    elif words > 100:
        confidence += 0.2
    elif words > 50:
        confidence += 0.1

    if formatting is not None:
        if formatting.headers:
            confidence += 0.1
        if formatting.lists:
            confidence += 0.1
        if formatting.tables:
            confidence += 0.1

    for pattern in MEANINGFUL_PATTERNS:
        if pattern.search(text):
            confidence += 0.05

    return round(min(confidence, 1.0), 2)


def clean_extracted_text(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = re.sub(r"[^\S\n]{2,}", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    # Control characters other than newline and tab
    text = re.sub(r"[\x00-\x08\x0b-\x1f\x7f]", "", text)
    return text.strip()


def count_words(text: str) -> int:
    return len(text.split())


def _text_from_xml(xml: str) -> str:
    """Strip WordprocessingML markup, keeping one line per paragraph."""
    xml = re.sub(r"</w:p>", "\n", xml)
    xml = re.sub(r"<w:tab/>", " ", xml)
    text = re.sub(r"<[^>]*>", "", xml)
    text = html.unescape(text)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def _table_rows(table: Table) -> List[str]:
    """Format a python-docx table as pipe-delimited rows, skipping empty ones."""
    rows: List[str] = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if any(cells):
            rows.append(" | ".join(cells))
    return rows


def extract_text_from_docx(data: bytes) -> DOCXExtractionResult:
    return EnhancedDOCXExtractor(data).extract_text()
