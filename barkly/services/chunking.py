"""
Character-offset text chunking.

Every chunk remembers where it came from: ``start_char`` / ``end_char`` are
offsets into the full document text, and ``start_page`` / ``end_page`` are
resolved from the page breaks reported by the extractor.  Those offsets let
quotes found in a chunk be mapped back onto the document.

Splitting strategy for one window (in priority order):
  1. Paragraph — end at the last blank line inside the window
  2. Sentence  — otherwise end after the last sentence terminator
  3. Hard cut  — otherwise end at the window edge

Consecutive windows overlap by ``overlap_size`` characters.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from barkly.config import settings

logger = logging.getLogger(__name__)


_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_END_RE = re.compile(r"[.!?]\s+")
_HEADER_LINE_RE = re.compile(r"^(#{1,6}\s+.+|.+\n[-=]{3,})$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+\.)\s+", re.MULTILINE)
_QUOTE_RE = re.compile(r"\"[^\"]{10,}\"|'[^']{10,}'|“[^”]{10,}”")

# Chunk sizes (max, min characters) per detected document type
DOCUMENT_TYPE_PROFILES: Dict[str, Tuple[int, int]] = {
    "academic": (800, 200),
    "conversational": (400, 100),
    "technical": (600, 150),
}
DOCUMENT_TYPE_STRATEGIES: Dict[str, str] = {
    "academic": "structural",
    "conversational": "semantic",
    "technical": "hybrid",
    "general": "hybrid",
}


def _count_words(text: str) -> int:
    return len(text.split())


def find_page_number(position: int, page_breaks: List[int]) -> int:
    """1-based page containing *position*; one past the last page if beyond all breaks."""
    for i, page_end in enumerate(page_breaks):
        if position <= page_end:
            return i + 1
    return len(page_breaks) + 1


def analyze_chunk_content(text: str) -> Dict[str, Any]:
    """Structural hints about a chunk: headers, bullets, quotes and overall type."""
    has_headers = bool(_HEADER_LINE_RE.search(text))
    has_bullets = bool(_BULLET_RE.search(text))
    has_quotes = bool(_QUOTE_RE.search(text))

    content_type = "narrative"
    if has_bullets and has_headers:
        content_type = "mixed"
    elif has_bullets:
        content_type = "list"
    elif "|" in text and "\n" in text:
        content_type = "table"

    return {
        "has_headers": has_headers,
        "has_bullet_points": has_bullets,
        "has_quotes": has_quotes,
        "content_type": content_type,
    }


class DocumentChunker:
    """
    Splits document text into overlapping, boundary-aware chunks.

    Returned chunks are dicts with keys:
      content, chunk_index, start_char, end_char, start_page, end_page,
      word_count, metadata
    """

    def __init__(
        self,
        max_chunk_size: Optional[int] = None,
        overlap_size: Optional[int] = None,
        min_chunk_size: Optional[int] = None,
        preserve_paragraphs: bool = True,
        preserve_sentences: bool = True,
    ) -> None:
        self.max_chunk_size = max_chunk_size or settings.CHUNK_MAX_CHARS
        self.overlap_size = settings.CHUNK_OVERLAP_CHARS if overlap_size is None else overlap_size
        self.min_chunk_size = settings.CHUNK_MIN_CHARS if min_chunk_size is None else min_chunk_size
        self.preserve_paragraphs = preserve_paragraphs
        self.preserve_sentences = preserve_sentences

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk_document(
        self,
        text: str,
        page_breaks: Optional[List[int]] = None,
    ) -> List[Dict[str, Any]]:
        """Chunk *text* into windows of at most ``max_chunk_size`` characters."""
        if not text or not text.strip():
            return []

        chunks: List[Dict[str, Any]] = []
        position = 0
        while position < len(text):
            end = self._window_end(text, position)
            chunk = self._make_chunk(text, position, end, len(chunks), page_breaks)
            if len(chunk["content"]) >= self.min_chunk_size:
                chunks.append(chunk)

            if end >= len(text):
                break
            next_position = end - self.overlap_size
            position = end if next_position <= position else next_position

        logger.debug("Created %d chunks from %d chars", len(chunks), len(text))
        return chunks

    def create_semantic_chunks(
        self,
        text: str,
        page_breaks: Optional[List[int]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Chunk each header-delimited section separately so no chunk spans two
        sections.  Offsets stay relative to the whole document.
        """
        chunks: List[Dict[str, Any]] = []
        for section_start, section_text, title in self._split_by_sections(text):
            for chunk in self.chunk_document(section_text):
                start = chunk["start_char"] + section_start
                end = chunk["end_char"] + section_start
                chunk.update(
                    chunk_index=len(chunks),
                    start_char=start,
                    end_char=end,
                    start_page=find_page_number(start, page_breaks) if page_breaks else None,
                    end_page=find_page_number(end, page_breaks) if page_breaks else None,
                )
                if title:
                    chunk["metadata"]["section_title"] = title
                chunks.append(chunk)
        return chunks

    def create_sliding_window_chunks(
        self,
        text: str,
        window_size: int = 1000,
        stride: int = 500,
    ) -> List[Dict[str, Any]]:
        """Fixed-size windows advanced by *stride* characters, ignoring boundaries."""
        chunks: List[Dict[str, Any]] = []
        position = 0
        while position < len(text):
            end = min(position + window_size, len(text))
            chunk = self._make_chunk(text, position, end, len(chunks), None)
            if len(chunk["content"]) >= self.min_chunk_size:
                chunks.append(chunk)
            position += stride
        return chunks

    def analyze_and_chunk(
        self,
        text: str,
        page_breaks: Optional[List[int]] = None,
    ) -> Dict[str, Any]:
        """
        Detect the kind of document and chunk it with a matching profile.

        Returns ``{"recommended_strategy", "chunks", "analysis"}`` where
        analysis carries document_type, average_sentence_length,
        has_structure and content_density.
        """
        sentences = re.findall(r"[^.!?]+[.!?]+", text)
        avg_sentence_length = (
            sum(len(s.split()) for s in sentences) / max(1, len(sentences))
        )
        has_headers = bool(
            re.search(r"^#{1,6}\s+.+$", text, re.MULTILINE)
            or re.search(r"^[A-Z][A-Z\s]+$", text, re.MULTILINE)
        )
        has_lists = bool(_BULLET_RE.search(text))
        has_long_quotes = bool(re.search(r"\"[^\"]{20,}\"|“[^”]{20,}”", text))

        document_type = "general"
        if has_headers and avg_sentence_length > 15:
            document_type = "academic"
        elif has_long_quotes and avg_sentence_length < 15:
            document_type = "conversational"
        elif has_lists or "function" in text or "class" in text:
            document_type = "technical"

        words = text.lower().split()
        content_density = len(set(words)) / max(1, len(words))

        chunker = self
        if document_type in DOCUMENT_TYPE_PROFILES:
            max_size, min_size = DOCUMENT_TYPE_PROFILES[document_type]
            chunker = DocumentChunker(
                max_chunk_size=max_size,
                overlap_size=max_size // 10,
                min_chunk_size=min_size,
            )

        if document_type == "academic":
            chunks = chunker.create_semantic_chunks(text, page_breaks)
        else:
            chunks = chunker.chunk_document(text, page_breaks)

        return {
            "recommended_strategy": DOCUMENT_TYPE_STRATEGIES[document_type],
            "chunks": chunks,
            "analysis": {
                "document_type": document_type,
                "average_sentence_length": round(avg_sentence_length, 2),
                "has_structure": has_headers or has_lists,
                "content_density": round(content_density, 3),
            },
        }

    # ------------------------------------------------------------------
    # Boundary search
    # ------------------------------------------------------------------

    def _window_end(self, text: str, start: int) -> int:
        max_end = min(start + self.max_chunk_size, len(text))
        if max_end >= len(text):
            return max_end

        end = max_end
        if self.preserve_paragraphs:
            paragraph_end = self._last_paragraph_break(text, start, max_end)
            if paragraph_end > start + self.min_chunk_size:
                end = paragraph_end

        if self.preserve_sentences and end == max_end:
            sentence_end = self._last_sentence_end(text, start, max_end)
            if sentence_end > start + self.min_chunk_size:
                end = sentence_end
        return end

    @staticmethod
    def _last_paragraph_break(text: str, start: int, max_end: int) -> int:
        last = max_end
        for match in _PARAGRAPH_RE.finditer(text, start, max_end):
            last = match.end()
        return last

    @staticmethod
    def _last_sentence_end(text: str, start: int, max_end: int) -> int:
        last = max_end
        for match in _SENTENCE_END_RE.finditer(text, start, max_end):
            if match.end() < max_end:
                last = match.end()
        return last

    @staticmethod
    def _split_by_sections(text: str) -> List[Tuple[int, str, str]]:
        """Return ``(offset, section_text, title)`` for each header-led section."""
        starts = [m.start() for m in _HEADER_LINE_RE.finditer(text)]
        if not starts or starts[0] != 0:
            starts.insert(0, 0)

        sections: List[Tuple[int, str, str]] = []
        for i, start in enumerate(starts):
            end = starts[i + 1] if i + 1 < len(starts) else len(text)
            body = text[start:end]
            if not body.strip():
                continue
            first_line = body.strip().splitlines()[0]
            header = _HEADER_LINE_RE.match(body.lstrip())
            title = first_line.lstrip("#").strip() if header else ""
            sections.append((start, body, title))
        return sections

    # ------------------------------------------------------------------
    # Chunk object factory
    # ------------------------------------------------------------------

    @staticmethod
    def _make_chunk(
        text: str,
        start: int,
        end: int,
        index: int,
        page_breaks: Optional[List[int]],
    ) -> Dict[str, Any]:
        content = text[start:end].strip()
        return {
            "content": content,
            "chunk_index": index,
            "start_char": start,
            "end_char": end,
            "start_page": find_page_number(start, page_breaks) if page_breaks else None,
            "end_page": find_page_number(end, page_breaks) if page_breaks else None,
            "word_count": _count_words(content),
            "metadata": analyze_chunk_content(content),
        }
