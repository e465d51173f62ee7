"""
Document processing pipeline.

Public API
----------
ProcessingPipeline.ingest(data, filename, options, db)
    → IngestResult
    Validate → store file → extract text → classify sensitivity → chunk → persist.

ProcessingPipeline.process(document_id, db)
    → ProcessingResult
    Embed chunks (when the embedding service is reachable) → LLM analysis.

ProcessingPipeline.process_in_background(document_id, status)
    Same as ``process`` in its own session, reporting into a JobStatus;
    the runner handed to ``job_manager.submit``.
"""
from __future__ import annotations

import dataclasses
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.config import settings
from barkly.database import AsyncSessionLocal
from barkly.models.database_models import (
    Chunk,
    Community,
    CulturalSensitivity,
    Document,
    ProcessingStatus,
)
from barkly.services import cultural_safety
from barkly.services.analysis import DocumentAnalysisService, analysis_service
from barkly.services.chunking import DocumentChunker
from barkly.services.document_parser import DocumentParser, ParsedDocument
from barkly.services.embedding import OllamaEmbeddingService, embedding_service
from barkly.services.pipeline_manager import JobPhase, JobStatus

logger = logging.getLogger(__name__)


class ExtractionError(ValueError):
    """The file was read but no text could be extracted from it."""

    def __init__(self, message: str, warnings: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.warnings = warnings or []


class FileTooLargeError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Options and result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class IngestOptions:
    community_id: Optional[int] = None
    category: Optional[str] = None
    source: Optional[str] = None
    tags: List[str] = dataclasses.field(default_factory=list)
    # Requested level; the content classification can only raise it
    cultural_sensitivity: Optional[CulturalSensitivity] = None
    uploaded_by: Optional[str] = None


@dataclasses.dataclass
class IngestResult:
    document: Document
    parsed: ParsedDocument
    chunk_count: int


@dataclasses.dataclass
class ProcessingResult:
    """Result of embedding and analysing one stored document."""

    document_id: int
    status: ProcessingStatus
    embedded_chunks: int
    total_chunks: int
    chunks_analyzed: int
    chunks_skipped: int
    themes_saved: int
    quotes_saved: int
    insights_saved: int
    keywords_saved: int
    entities_saved: int
    cultural_sensitivity: CulturalSensitivity
    requires_elder_review: bool
    errors: List[str]
    processing_time_seconds: float
    message: str


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ProcessingPipeline:
    """
    Coordinates parsing, chunking, embedding and analysis.

    Services default to the module singletons so tests can patch them in
    one place.
    """

    def __init__(
        self,
        parser: Optional[DocumentParser] = None,
        embedder: Optional[OllamaEmbeddingService] = None,
        analyzer: Optional[DocumentAnalysisService] = None,
    ) -> None:
        self._parser = parser or DocumentParser()
        self._embedder = embedder or embedding_service
        self._analyzer = analyzer or analysis_service

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def ingest(
        self,
        data: bytes,
        filename: str,
        options: IngestOptions,
        db: AsyncSession,
    ) -> IngestResult:
        """
        Parse, classify, chunk and store one uploaded file.

        Raises:
            ValueError:        Unsupported type or unknown community.
            FileTooLargeError: More than MAX_FILE_SIZE bytes.
            ExtractionError:   No text could be extracted.
        """
        file_ext = Path(filename).suffix.lower()
        if file_ext not in settings.SUPPORTED_FILE_TYPES:
            raise ValueError(
                f"Unsupported file type '{file_ext}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_FILE_TYPES)}"
            )
        if len(data) > settings.MAX_FILE_SIZE:
            raise FileTooLargeError(
                f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit."
            )
        if options.community_id is not None:
            if await db.get(Community, options.community_id) is None:
                raise ValueError(f"Community {options.community_id} not found")

        parsed = await self._parser.parse_document(data, filename)
        if not parsed.full_text.strip():
            raise ExtractionError("Document contains no extractable text.", parsed.warnings)

        safety = cultural_safety.analyze_cultural_safety(parsed.full_text, "document")
        level = safety.level
        if options.cultural_sensitivity is not None:
            level = cultural_safety.max_level([level, options.cultural_sensitivity])
        elder_required = cultural_safety.CULTURAL_SAFETY_LEVELS[level].elder_approval_required

        low_confidence = parsed.confidence < settings.MIN_EXTRACTION_CONFIDENCE
        if low_confidence:
            parsed.warnings.append(
                f"Extraction confidence {parsed.confidence:.2f} is below "
                f"{settings.MIN_EXTRACTION_CONFIDENCE:.2f}; verify the text manually"
            )

        chunks = DocumentChunker().chunk_document(parsed.full_text, parsed.page_breaks or None)

        # Stored under a UUID name to prevent collisions
        os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
        file_path = os.path.join(settings.UPLOAD_DIR, f"{uuid.uuid4().hex}{file_ext}")
        async with aiofiles.open(file_path, "wb") as out:
            await out.write(data)

        try:
            metadata = dict(parsed.metadata)
            metadata["page_breaks"] = parsed.page_breaks
            metadata["cultural_flags"] = safety.flags

            document = Document(
                community_id=options.community_id,
                uploaded_by=options.uploaded_by,
                filename=filename,
                file_path=file_path,
                file_type=file_ext.lstrip("."),
                file_size=len(data),
                category=options.category,
                source=options.source,
                tags=options.tags,
                content_text=parsed.full_text,
                page_count=parsed.page_count,
                word_count=parsed.word_count,
                extraction_method=parsed.method,
                extraction_confidence=parsed.confidence,
                extraction_warnings=parsed.warnings,
                processing_status=(
                    ProcessingStatus.NEEDS_REVIEW
                    if low_confidence or elder_required
                    else ProcessingStatus.COMPLETED
                ),
                cultural_sensitivity=level,
                requires_elder_review=elder_required,
                metadata_json=metadata,
                processed_at=datetime.now(timezone.utc),
            )
            db.add(document)
            await db.flush()  # populate document.id before creating chunks

            for chunk_data in chunks:
                db.add(
                    Chunk(
                        document_id=document.id,
                        chunk_index=chunk_data["chunk_index"],
                        content=chunk_data["content"],
                        start_char=chunk_data["start_char"],
                        end_char=chunk_data["end_char"],
                        start_page=chunk_data["start_page"],
                        end_page=chunk_data["end_page"],
                        word_count=chunk_data["word_count"],
                        metadata_json=chunk_data["metadata"],
                    )
                )

            if safety.review_required or level != safety.level:
                await cultural_safety.submit_for_cultural_review(
                    db,
                    content_id=document.id,
                    content_type="document",
                    content=parsed.full_text,
                    community_id=options.community_id,
                    analysis=dataclasses.replace(safety, level=level),
                )

            await db.commit()
        except Exception:
            await db.rollback()
            remove_stored_file(file_path)
            raise

        logger.info(
            "Document %r stored as id=%d: %s, confidence %.2f, %d chunks, sensitivity %s",
            filename,
            document.id,
            parsed.method.value,
            parsed.confidence,
            len(chunks),
            level.value,
        )
        return IngestResult(document=document, parsed=parsed, chunk_count=len(chunks))

    # ------------------------------------------------------------------
    # Embed + analyse
    # ------------------------------------------------------------------

    async def process(
        self,
        document_id: int,
        db: AsyncSession,
        status: Optional[JobStatus] = None,
    ) -> ProcessingResult:
        """
        Embed and analyse a stored document.

        Embedding is optional: when the embedding service is down the chunks
        are left unembedded and a warning is recorded.  An analysis failure
        marks the document ``failed`` and re-raises.
        """
        t0 = time.monotonic()
        document = await db.get(Document, document_id)
        if document is None:
            raise ValueError(f"Document {document_id} not found.")

        document.processing_status = ProcessingStatus.PROCESSING
        document.processing_error = None
        await db.commit()

        errors: List[str] = []

        # Step 1: embed
        if status is not None:
            status.phase = JobPhase.EMBEDDING
        embedded_chunks, total_chunks = 0, 0
        try:
            if await self._embedder.check_ollama_health():
                embedded_chunks, total_chunks = await self._embedder.embed_document_chunks(
                    document_id, db
                )
            else:
                errors.append("Embedding service unavailable; chunks left unembedded")
        except Exception as exc:
            logger.error("Pipeline.process: embed failed for id=%d: %s", document_id, exc)
            await db.rollback()
            errors.append(f"Embedding failed: {exc}")

        # Step 2: analyse
        if status is not None:
            status.phase = JobPhase.ANALYZING

        try:
            summary = await self._analyzer.process_document(
                document_id,
                db,
                on_chunk_done=status.chunk_done if status is not None else None,
            )
        except Exception as exc:
            logger.error("Pipeline.process: analysis failed for id=%d: %s", document_id, exc)
            await db.rollback()
            document = await db.get(Document, document_id)
            if document is not None:
                document.processing_status = ProcessingStatus.FAILED
                document.processing_error = str(exc)[:1000]
                await db.commit()
            raise

        errors.extend(summary.errors)
        document = await db.get(Document, document_id)
        low_confidence = (
            document.extraction_confidence is not None
            and document.extraction_confidence < settings.MIN_EXTRACTION_CONFIDENCE
        )
        awaiting_elder = document.requires_elder_review and not document.elder_approved
        document.processing_status = (
            ProcessingStatus.NEEDS_REVIEW if low_confidence or awaiting_elder
            else ProcessingStatus.COMPLETED
        )
        document.processed_at = datetime.now(timezone.utc)
        await db.commit()

        elapsed = round(time.monotonic() - t0, 2)
        message = (
            f"Document '{document.filename}' processed in {elapsed}s: "
            f"{summary.themes_saved} themes, {summary.quotes_saved} quotes, "
            f"{summary.entities_saved} entities."
        )
        if errors:
            message += f" {len(errors)} warning(s)."
        logger.info("Pipeline.process: %s", message)

        return ProcessingResult(
            document_id=document_id,
            status=document.processing_status,
            embedded_chunks=embedded_chunks,
            total_chunks=total_chunks,
            chunks_analyzed=summary.chunks_analyzed,
            chunks_skipped=summary.chunks_skipped,
            themes_saved=summary.themes_saved,
            quotes_saved=summary.quotes_saved,
            insights_saved=summary.insights_saved,
            keywords_saved=summary.keywords_saved,
            entities_saved=summary.entities_saved,
            cultural_sensitivity=summary.cultural_sensitivity,
            requires_elder_review=summary.requires_elder_review,
            errors=errors,
            processing_time_seconds=elapsed,
            message=message,
        )

    async def process_in_background(self, document_id: int, status: JobStatus) -> dict:
        """
        Run ``process`` in a fresh session and return its result as a dict.

        Meant to be handed to ``job_manager.submit``; exceptions propagate so
        the job is recorded as failed.
        """
        async with AsyncSessionLocal() as db:
            result = await self.process(document_id, db, status=status)
        status.errors.extend(result.errors)
        return _as_dict(result)


def _as_dict(result: ProcessingResult) -> dict:
    data: dict = dataclasses.asdict(result)
    for key, value in data.items():
        if hasattr(value, "value"):
            data[key] = value.value
    return data


def remove_stored_file(path: str) -> None:
    """Delete a stored upload if it is still there, logging OS errors."""
    try:
        if path and os.path.exists(path):
            os.remove(path)
    except OSError as exc:
        logger.warning("Could not remove file %s: %s", path, exc)


# Module-level singleton
processing_pipeline = ProcessingPipeline()
