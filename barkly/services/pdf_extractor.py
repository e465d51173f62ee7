"""
PDF text extraction with a chain of fallback methods.

Methods are tried in order and the first one producing more than
MIN_TEXT_LENGTH characters wins:

  1. pymupdf       — layout-aware text with heading detection (fitz)
  2. pypdf         — pure-Python text extraction, tolerant of broken xrefs
  3. buffer_parse  — regex over the raw bytes for PDF string operators
  4. ocr           — Tesseract over rendered pages, only for scanned PDFs

Every result carries a heuristic confidence score (0–1) and the warnings
collected from the methods that failed before it.  Extraction never raises:
a PDF nothing can read comes back with method ``failed`` and confidence 0.
"""
from __future__ import annotations

import dataclasses
import io
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import fitz  # PyMuPDF
import pytesseract
from PIL import Image
from pypdf import PdfReader

from barkly.config import settings
from barkly.models.database_models import ExtractionMethod

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 50
BUFFER_SCAN_LIMIT = 1_000_000       # bytes examined by buffer parsing
SCANNED_SCAN_LIMIT = 50_000         # bytes examined by the scanned heuristic
METADATA_SCAN_LIMIT = 10_000
AVG_BYTES_PER_PAGE = 3000
OCR_CONFIDENCE_CAP = 0.7

COMMON_WORDS = ("the", "and", "of", "to", "in", "a", "is", "that", "for", "with")


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ExtractionResult:
    """
    Output of one extraction attempt.

    ``page_breaks`` holds, for each page, the character offset in ``text``
    where that page ends.  Methods that cannot see page boundaries leave it
    empty.
    """

    text: str
    page_count: int
    method: ExtractionMethod
    confidence: float
    warnings: List[str] = dataclasses.field(default_factory=list)
    metadata: Dict[str, Any] = dataclasses.field(default_factory=dict)
    page_breaks: List[int] = dataclasses.field(default_factory=list)

    @classmethod
    def failed(cls, warnings: List[str]) -> "ExtractionResult":
        return cls(
            text="",
            page_count=0,
            method=ExtractionMethod.FAILED,
            confidence=0.0,
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class ImprovedPDFExtractor:
    """Extracts text from PDF bytes, falling back through several methods."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        if settings.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def extract_text(self) -> ExtractionResult:
        """Run the fallback chain and return the first acceptable result."""
        warnings: List[str] = []

        attempts: List[Tuple[str, Callable[[], ExtractionResult]]] = [
            ("pymupdf", self._extract_with_pymupdf),
            ("pypdf", self._extract_with_pypdf),
            ("buffer parsing", self._extract_with_buffer_parsing),
        ]
        for label, attempt in attempts:
            try:
                result = attempt()
            except Exception as exc:
                warnings.append(f"{label} failed: {exc}")
                logger.debug("PDF %s extraction raised: %s", label, exc)
                continue

            if len(result.text) > MIN_TEXT_LENGTH:
                result.warnings = warnings + result.warnings
                logger.info(
                    "PDF extracted with %s: %d chars, %d pages, confidence %.2f",
                    result.method.value,
                    len(result.text),
                    result.page_count,
                    result.confidence,
                )
                return result
            warnings.append(f"{label} extracted minimal text")

        if self.check_if_scanned():
            warnings.append("PDF appears to be scanned/image-based. OCR would be needed.")
            if not settings.OCR_ENABLED:
                return ExtractionResult.failed(
                    warnings + ["Scanned PDF detected - OCR required but disabled"]
                )
            try:
                result = self._extract_with_ocr()
            except Exception as exc:
                warnings.append(f"OCR failed: {exc}")
                logger.warning("PDF OCR failed: %s", exc)
                return ExtractionResult.failed(warnings)
            if len(result.text) > MIN_TEXT_LENGTH:
                result.warnings = warnings + result.warnings
                return result
            warnings.append("OCR extracted minimal text")

        logger.warning("All PDF extraction methods failed (%d bytes)", len(self.data))
        return ExtractionResult.failed(warnings)

    def check_if_scanned(self) -> bool:
        """
        Return True when the PDF looks image-based.

        With a parsable document: at least half the pages carry images but no
        text layer.  Otherwise a byte heuristic: many ``/Image`` objects and
        almost no ``BT … ET`` text objects near the start of the file.
        """
        try:
            doc = fitz.open(stream=self.data, filetype="pdf")
        except Exception:
            doc = None

        if doc is not None:
            try:
                if doc.page_count > 0:
                    image_only = sum(
                        1
                        for page in doc
                        if page.get_images() and not page.get_text().strip()
                    )
                    return image_only * 2 >= doc.page_count
            finally:
                doc.close()

        head = self._head(SCANNED_SCAN_LIMIT)
        image_count = len(re.findall(r"/Image", head))
        text_objects = len(re.findall(r"BT[\s\S]*?ET", head))
        return image_count > 5 and text_objects < 2

    def get_detailed_metadata(self) -> Dict[str, Any]:
        """Return the extraction result plus structural facts about the file."""
        return {"basic": self.extract_text(), "advanced": self.structural_metadata()}

    def structural_metadata(self) -> Dict[str, Any]:
        """Encryption, scan, form, compression and version facts; no text extraction."""
        head = self._head(METADATA_SCAN_LIMIT)

        compression: Optional[str] = None
        if "/FlateDecode" in head:
            compression = "FlateDecode"
        elif "/DCTDecode" in head:
            compression = "DCTDecode"

        version = re.search(r"%PDF-(\d\.\d)", head)
        return {
            "is_encrypted": "/Encrypt" in head,
            "is_scanned": self.check_if_scanned(),
            "has_form": "/AcroForm" in head,
            "compression_type": compression,
            "pdf_version": version.group(1) if version else None,
        }

    # ------------------------------------------------------------------
    # Method 1: PyMuPDF
    # ------------------------------------------------------------------

    def _extract_with_pymupdf(self) -> ExtractionResult:
        doc = fitz.open(stream=self.data, filetype="pdf")
        try:
            if doc.needs_pass:
                raise RuntimeError("PDF is password-protected")

            raw_meta = doc.metadata or {}
            page_count = doc.page_count

            font_sizes: List[float] = []
            for page in doc:
                for block in page.get_text("dict")["blocks"]:
                    if block.get("type") != 0:
                        continue
                    for line in block.get("lines", []):
                        for span in line.get("spans", []):
                            sz = span.get("size", 0.0)
                            if sz > 0:
                                font_sizes.append(sz)

            body_font_size = _modal_font_size(font_sizes) if font_sizes else 11.0
            heading_size_threshold = body_font_size * 1.15

            pages: List[str] = []
            for page in doc:
                pages.append(
                    self._page_text(page, body_font_size, heading_size_threshold)
                )
        finally:
            doc.close()

        text, page_breaks = _join_pages(pages)
        metadata = {
            "title": raw_meta.get("title", "") or "",
            "author": raw_meta.get("author", "") or "",
            "subject": raw_meta.get("subject", "") or "",
            "keywords": raw_meta.get("keywords", "") or "",
            "creation_date": _pdf_date(raw_meta.get("creationDate", "")),
            "modification_date": _pdf_date(raw_meta.get("modDate", "")),
        }
        return ExtractionResult(
            text=text,
            page_count=page_count,
            method=ExtractionMethod.PYMUPDF,
            confidence=calculate_confidence(text, page_count),
            metadata=metadata,
            page_breaks=page_breaks,
        )

    @staticmethod
    def _page_text(page, body_font_size: float, heading_size_threshold: float) -> str:
        """Text of one page with running headers/footers dropped and headings marked."""
        page_height = page.rect.height
        # Zones to discard: top 8 % (running header) and bottom 8 % (footer)
        header_cutoff = page_height * 0.08
        footer_cutoff = page_height * 0.92

        line_items: List[Tuple[float, float, str, bool, float]] = []
        for block in page.get_text("dict")["blocks"]:
            if block.get("type") != 0:
                continue
            bbox = block.get("bbox", [0, 0, 0, 0])
            y0, x0 = bbox[1], bbox[0]
            if y0 < header_cutoff or y0 > footer_cutoff:
                continue

            for line in block.get("lines", []):
                max_sz = 0.0
                is_bold_line = False
                span_parts: List[str] = []
                for span in line.get("spans", []):
                    raw_txt = span.get("text", "")
                    if not raw_txt.strip():
                        continue
                    sz = span.get("size", 0.0)
                    if sz > max_sz:
                        max_sz = sz
                    if span.get("flags", 0) & 16:  # bold
                        is_bold_line = True
                    span_parts.append(raw_txt)

                line_text = " ".join(span_parts).strip()
                if not line_text or re.match(r"^\d{1,4}$", line_text):
                    continue

                is_heading = max_sz >= heading_size_threshold or (
                    is_bold_line
                    and max_sz >= body_font_size
                    and len(line_text.split()) <= 15
                )
                line_y = line.get("bbox", bbox)[1]
                line_items.append((line_y, x0, line_text, is_heading, max_sz))

        line_items.sort(key=lambda item: (item[0], item[1]))

        lines: List[str] = []
        for _y, _x, line_text, is_heading, span_sz in line_items:
            if is_heading:
                level = _estimate_heading_level(span_sz, body_font_size)
                lines.append("")
                lines.append(f"{'#' * level} {line_text}")
                lines.append("")
            else:
                lines.append(line_text)
        return clean_layout_text("\n".join(lines))

    # ------------------------------------------------------------------
    # Method 2: pypdf
    # ------------------------------------------------------------------

    def _extract_with_pypdf(self) -> ExtractionResult:
        reader = PdfReader(io.BytesIO(self.data), strict=False)
        pages = [clean_layout_text(page.extract_text() or "") for page in reader.pages]
        text, page_breaks = _join_pages(pages)

        info = reader.metadata or {}
        metadata = {
            "title": str(info.get("/Title", "") or ""),
            "author": str(info.get("/Author", "") or ""),
            "subject": str(info.get("/Subject", "") or ""),
            "keywords": str(info.get("/Keywords", "") or ""),
            "creation_date": _pdf_date(str(info.get("/CreationDate", "") or "")),
            "modification_date": _pdf_date(str(info.get("/ModDate", "") or "")),
        }
        page_count = len(reader.pages)
        return ExtractionResult(
            text=text,
            page_count=page_count,
            method=ExtractionMethod.PYPDF,
            confidence=calculate_confidence(text, page_count),
            metadata=metadata,
            page_breaks=page_breaks,
        )

    # ------------------------------------------------------------------
    # Method 3: raw buffer parsing
    # ------------------------------------------------------------------

    def _extract_with_buffer_parsing(self) -> ExtractionResult:
        text = clean_buffer_text(self._text_from_buffer())
        page_count = self._estimate_page_count()
        return ExtractionResult(
            text=text,
            page_count=page_count,
            method=ExtractionMethod.BUFFER_PARSE,
            confidence=calculate_confidence(text, page_count),
            warnings=["Text recovered from raw PDF operators; layout is lost"],
        )

    def _text_from_buffer(self) -> str:
        raw = self._head(BUFFER_SCAN_LIMIT)
        texts: List[str] = []

        # Literal strings anywhere in the file
        texts.extend(re.findall(r"\(([^)]+)\)", raw))

        # Show-text operators inside BT … ET text objects
        for block in re.findall(r"BT\s*([\s\S]*?)\s*ET", raw):
            texts.extend(re.findall(r"\((.*?)\)\s*Tj", block))

        # Hex-encoded strings
        for hex_str in re.findall(r"<([0-9A-Fa-f]+)>\s*Tj", raw):
            if len(hex_str) % 2:
                continue
            decoded = bytes.fromhex(hex_str).decode("utf-8", errors="replace")
            if _is_valid_text(decoded):
                texts.append(decoded)

        return " ".join(t for t in texts if len(t) > 2 and _is_valid_text(t)).strip()

    def _estimate_page_count(self) -> int:
        head = self._head(100_000)
        pages = re.findall(r"/Type\s*/Page[^s]", head)
        if pages:
            return len(pages)
        return max(1, round(len(self.data) / AVG_BYTES_PER_PAGE))

    # ------------------------------------------------------------------
    # Method 4: OCR
    # ------------------------------------------------------------------

    def _extract_with_ocr(self) -> ExtractionResult:
        doc = fitz.open(stream=self.data, filetype="pdf")
        try:
            pages: List[str] = []
            for page in doc:
                pix = page.get_pixmap(matrix=fitz.Matrix(2, 2))
                img = Image.open(io.BytesIO(pix.tobytes("png")))
                pages.append(clean_layout_text(pytesseract.image_to_string(img)))
            page_count = doc.page_count
        finally:
            doc.close()

        text, page_breaks = _join_pages(pages)
        confidence = min(calculate_confidence(text, page_count), OCR_CONFIDENCE_CAP)
        return ExtractionResult(
            text=text,
            page_count=page_count,
            method=ExtractionMethod.OCR,
            confidence=confidence,
            warnings=["Text produced by OCR; verify spelling of names and places"],
            page_breaks=page_breaks,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _head(self, limit: int) -> str:
        """First *limit* bytes decoded one-to-one so regexes see raw operators."""
        return self.data[:limit].decode("latin-1")


# ---------------------------------------------------------------------------
# Confidence scoring
# ---------------------------------------------------------------------------

def calculate_confidence(text: str, page_count: int) -> float:
    """
    Heuristic quality score for extracted text.

    Adds up density (characters per page), volume (words longer than two
    characters), sentence structure and the presence of common English
    function words.
    """
    if not text:
        return 0.0

    confidence = 0.0

    avg_chars_per_page = len(text) / max(1, page_count)
    if avg_chars_per_page > 500:
        confidence += 0.3
    elif avg_chars_per_page > 200:
        confidence += 0.2
    elif avg_chars_per_page > 50:
        confidence += 0.1

    word_count = sum(1 for w in text.split() if len(w) > 2)
    if word_count > 100:
        confidence += 0.3
    elif word_count > 50:
        confidence += 0.2
    elif word_count > 20:
        confidence += 0.1

    sentences = len(re.findall(r"[.!?]+", text))
    capitals = len(re.findall(r"[A-Z]", text))
    if sentences > 5 and capitals > 10:
        confidence += 0.2

    lower = text.lower()
    common = sum(1 for w in COMMON_WORDS if re.search(rf"\b{w}\b", lower))
    if common >= 7:
        confidence += 0.2
    elif common >= 4:
        confidence += 0.1

    return round(min(1.0, confidence), 2)


# ---------------------------------------------------------------------------
# Text cleaning
# ---------------------------------------------------------------------------

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def clean_layout_text(text: str) -> str:
    """Tidy text that still has meaningful line structure."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_RE.sub("", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_buffer_text(text: str) -> str:
    """Tidy text scraped from raw operators, where words are often glued together."""
    text = _CONTROL_RE.sub("", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    return re.sub(r" +", " ", text).strip()


def _is_valid_text(text: str) -> bool:
    """True when more than 80 % of the characters are printable ASCII."""
    if not text:
        return False
    printable = len(re.findall(r"[\x20-\x7E]", text))
    return printable / len(text) > 0.8


def _join_pages(pages: List[str]) -> Tuple[str, List[int]]:
    """Join page texts with blank lines and record where each page ends."""
    text = ""
    breaks: List[int] = []
    for page_text in pages:
        if text and page_text:
            text += "\n\n"
        text += page_text
        breaks.append(len(text))
    return text, breaks


def _modal_font_size(sizes: List[float]) -> float:
    """Return the most frequently occurring font size (proxy for body text)."""
    freq: Dict[float, int] = {}
    for s in sizes:
        key = round(s, 1)
        freq[key] = freq.get(key, 0) + 1
    return max(freq, key=lambda k: freq[k])


def _estimate_heading_level(span_size: float, body_size: float) -> int:
    """Map a span's font-size ratio to an H1/H2/H3 level."""
    ratio = span_size / body_size if body_size > 0 else 1.0
    if ratio >= 1.5:
        return 1
    if ratio >= 1.25:
        return 2
    return 3


def _pdf_date(value: str) -> str:
    """Convert a PDF date string (``D:20240131093000+09'30'``) to ISO 8601."""
    match = re.match(r"^(?:D:)?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?", value or "")
    if not match:
        return ""
    year, month, day, hour, minute, second = match.groups()
    return (
        f"{year}-{month or '01'}-{day or '01'}"
        f"T{hour or '00'}:{minute or '00'}:{second or '00'}"
    )


# ---------------------------------------------------------------------------
# Module-level conveniences
# ---------------------------------------------------------------------------

def extract_text_from_pdf(data: bytes) -> ExtractionResult:
    return ImprovedPDFExtractor(data).extract_text()


def extract_text_from_multiple_pdfs(
    items: Iterable[Tuple[bytes, str]],
    on_progress: Optional[Callable[[str, int, int], None]] = None,
) -> Dict[str, ExtractionResult]:
    """
    Extract several PDFs in sequence.

    *items* are ``(data, filename)`` pairs.  *on_progress* is called with
    ``(filename, position, total)`` before each file, position being 1-based.
    A file whose extraction raises is recorded as a failed result.
    """
    items = list(items)
    results: Dict[str, ExtractionResult] = {}
    for position, (data, filename) in enumerate(items, start=1):
        if on_progress is not None:
            on_progress(filename, position, len(items))
        try:
            results[filename] = ImprovedPDFExtractor(data).extract_text()
        except Exception as exc:
            logger.error("Batch extraction failed for %r: %s", filename, exc)
            results[filename] = ExtractionResult.failed([f"Extraction failed: {exc}"])
    return results
