"""
Document parsing service: dispatches uploads to the right extractor.

Returns a ParsedDocument with the full text, per-page character offsets
(PDF only), the extraction diagnostics (method, confidence, warnings) and
metadata (page_count, word_count, reading_time_minutes, detected_language,
title, author, …).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from langdetect import DetectorFactory, detect as _langdetect_fn
from langdetect.lang_detect_exception import LangDetectException

from barkly.models.database_models import ExtractionMethod
from barkly.services.docx_extractor import EnhancedDOCXExtractor
from barkly.services.pdf_extractor import (
    ImprovedPDFExtractor,
    calculate_confidence,
    clean_layout_text,
)

logger = logging.getLogger(__name__)

# Deterministic language detection
DetectorFactory.seed = 0

SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt", ".md")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ParsedDocument:
    """
    Output of the DocumentParser.

    Attributes:
        full_text:    Complete extracted text.
        page_breaks:  Character offset at which each page ends (PDF only).
        method:       Extractor that produced the text.
        confidence:   Heuristic extraction quality, 0–1.
        warnings:     Messages from methods that failed or degraded.
        metadata:     page_count, word_count, reading_time_minutes,
                      detected_language, file_type plus whatever the
                      extractor reported (title, author, formatting, …).
    """

    full_text: str
    method: ExtractionMethod
    confidence: float
    page_breaks: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return int(self.metadata.get("page_count") or 0)

    @property
    def word_count(self) -> int:
        return int(self.metadata.get("word_count") or 0)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class DocumentParser:
    """Parses PDF, DOCX and plain-text uploads into ParsedDocument objects."""

    async def parse_document(self, data: bytes, filename: str) -> ParsedDocument:
        """
        Extract text from an uploaded file.  PDF and DOCX extraction runs in a
        worker thread.

        Raises:
            ValueError: Unsupported file extension.
        """
        ext = Path(filename).suffix.lower()
        if ext == ".pdf":
            parsed = await asyncio.to_thread(self._parse_pdf, data)
        elif ext == ".docx":
            parsed = await asyncio.to_thread(self._parse_docx, data)
        elif ext in (".txt", ".md"):
            parsed = self._parse_plain_text(data)
        else:
            raise ValueError(f"Unsupported file type: {ext or filename!r}")

        word_count = len(parsed.full_text.split())
        parsed.metadata.update(
            {
                "word_count": word_count,
                "reading_time_minutes": round(word_count / 200, 1),
                "detected_language": _detect_language(parsed.full_text[:3000]),
                "file_type": ext.lstrip("."),
            }
        )
        logger.info(
            "Parsed %r via %s: %d words, confidence %.2f, %d warning(s)",
            filename,
            parsed.method.value,
            word_count,
            parsed.confidence,
            len(parsed.warnings),
        )
        return parsed

    # ------------------------------------------------------------------
    # Per-format helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_pdf(data: bytes) -> ParsedDocument:
        result = ImprovedPDFExtractor(data).extract_text()
        metadata = dict(result.metadata)
        metadata["page_count"] = result.page_count
        return ParsedDocument(
            full_text=result.text,
            method=result.method,
            confidence=result.confidence,
            page_breaks=result.page_breaks,
            warnings=result.warnings,
            metadata=metadata,
        )

    @staticmethod
    def _parse_docx(data: bytes) -> ParsedDocument:
        result = EnhancedDOCXExtractor(data).extract_text()
        metadata = dict(result.metadata)
        # python-docx cannot report a rendered page count
        metadata["page_count"] = 0
        if result.formatting is not None:
            metadata["formatting"] = result.formatting.as_dict()
        return ParsedDocument(
            full_text=result.text,
            method=result.method,
            confidence=result.confidence,
            warnings=result.warnings,
            metadata=metadata,
        )

    @staticmethod
    def _parse_plain_text(data: bytes) -> ParsedDocument:
        warnings: List[str] = []
        try:
            raw = data.decode("utf-8")
        except UnicodeDecodeError:
            raw = data.decode("utf-8", errors="replace")
            warnings.append("File is not valid UTF-8; undecodable bytes were replaced")

        text = clean_layout_text(raw)
        return ParsedDocument(
            full_text=text,
            method=ExtractionMethod.PLAIN_TEXT if text else ExtractionMethod.FAILED,
            confidence=calculate_confidence(text, 1),
            warnings=warnings,
            metadata={"page_count": 1 if text else 0},
        )


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def _detect_language(sample: str) -> str:
    """Detect the language of a text sample; returns an ISO 639-1 code or 'unknown'."""
    if len(sample.split()) < 20:
        return "unknown"
    try:
        return _langdetect_fn(sample)
    except LangDetectException:
        return "unknown"
