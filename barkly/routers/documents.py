"""
Document upload, extraction diagnostics and analysis endpoints.

POST /upload                  — parse, classify and chunk one or more files.
POST /verify-extraction       — run extraction on a file without storing it.
GET  /                        — list documents the caller may read.
GET  /overview                — counts by status, method and sensitivity.
GET  /{id}                    — document metadata + chunk count.
DELETE /{id}                  — delete document, chunks, analysis and file.
GET  /{id}/chunks             — the document's chunks in order.
POST /{id}/process            — embed + analyse synchronously.
POST /{id}/process-background — same, as a background job.
GET  /{id}/process-status     — poll a background job.
GET  /{id}/review             — analysis grouped for manual verification.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.config import settings
from barkly.database import get_db
from barkly.dependencies.auth import Caller, get_caller, require_user
from barkly.models.database_models import (
    Chunk,
    CulturalSensitivity,
    Document,
    DocumentInsight,
    DocumentKeyword,
    DocumentQuote,
    DocumentTheme,
    ProcessingStatus,
    UserRole,
)
from barkly.models.schemas import (
    ChunkResponse,
    DocumentOverviewResponse,
    DocumentResponse,
    DocumentReviewResponse,
    ExtractionInfo,
    InsightResponse,
    ProcessDocumentResponse,
    ProcessingJobStatus,
    QuoteResponse,
    ThemeResponse,
    UploadFileResult,
    UploadResponse,
    VerificationCounts,
    VerifyExtractionResponse,
)
from barkly.services.analysis import DocumentAnalysisService
from barkly.services.document_parser import DocumentParser
from barkly.services.pdf_extractor import ImprovedPDFExtractor
from barkly.services.pipeline import (
    ExtractionError,
    FileTooLargeError,
    IngestOptions,
    processing_pipeline,
    remove_stored_file,
)
from barkly.services.pipeline_manager import JobConflict, JobStatus, job_manager
from barkly.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

router = APIRouter()

PREVIEW_CHARS = 500


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_documents(
    files: List[UploadFile] = File(...),
    community_id: Optional[int] = Form(None),
    category: Optional[str] = Form(None),
    source: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    cultural_sensitivity: Optional[CulturalSensitivity] = Form(None),
    enable_ai: bool = Form(False),
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> UploadResponse:
    """
    Upload up to MAX_FILES_PER_UPLOAD PDF, DOCX, TXT or MD files.

    Each file is parsed, classified and chunked on its own; a file that
    fails is reported in its result entry and does not affect the others.
    With ``enable_ai`` every stored document is also analysed before the
    response is returned.
    """
    if len(files) > settings.MAX_FILES_PER_UPLOAD:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.MAX_FILES_PER_UPLOAD} files per upload.",
        )

    options = IngestOptions(
        community_id=community_id,
        category=category,
        source=source,
        tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
        cultural_sensitivity=cultural_sensitivity,
        uploaded_by=caller.user_id,
    )

    # Each file commits on its own; persist a newly created caller first
    await db.commit()

    results: List[UploadFileResult] = []
    for upload in files:
        filename = upload.filename or "unnamed"
        try:
            data = await _read_upload(upload)
            ingested = await processing_pipeline.ingest(data, filename, options, db)
        except (ExtractionError, FileTooLargeError, ValueError) as exc:
            logger.warning("Upload of %r rejected: %s", filename, exc)
            results.append(UploadFileResult(filename=filename, success=False, error=str(exc)))
            continue
        except Exception as exc:
            logger.exception("Upload error for %r", filename)
            results.append(
                UploadFileResult(
                    filename=filename,
                    success=False,
                    error=f"Error processing document: {exc}",
                )
            )
            continue

        document = ingested.document
        result = UploadFileResult(
            filename=filename,
            success=True,
            document_id=document.id,
            status=document.processing_status,
            cultural_sensitivity=document.cultural_sensitivity,
            requires_elder_review=document.requires_elder_review,
            extraction=ExtractionInfo(
                method=ingested.parsed.method,
                confidence=ingested.parsed.confidence,
                warnings=ingested.parsed.warnings,
            ),
            page_count=document.page_count,
            word_count=document.word_count,
            chunk_count=ingested.chunk_count,
        )

        if enable_ai:
            try:
                processed = await processing_pipeline.process(document.id, db)
                result.status = processed.status
                result.cultural_sensitivity = processed.cultural_sensitivity
                result.requires_elder_review = processed.requires_elder_review
                result.themes_found = processed.themes_saved
                result.quotes_found = processed.quotes_saved
            except Exception as exc:
                logger.exception("AI analysis failed for document id=%d", document.id)
                result.status = ProcessingStatus.FAILED
                result.error = f"AI analysis failed: {exc}"

        results.append(result)

    successful = sum(1 for r in results if r.success)
    logger.info("Upload finished: %d/%d files stored", successful, len(results))

    return UploadResponse(
        total_files=len(results),
        successful=successful,
        failed=len(results) - successful,
        results=results,
    )


# ---------------------------------------------------------------------------
# Extraction diagnostics
# ---------------------------------------------------------------------------

@router.post("/verify-extraction", response_model=VerifyExtractionResponse)
async def verify_extraction(file: UploadFile = File(...)) -> VerifyExtractionResponse:
    """
    Run the extraction chain on one file and report how well it worked.

    Nothing is stored.  PDFs additionally report encryption, scan,
    form, compression and version details.
    """
    filename = file.filename or "unnamed"
    file_ext = Path(filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_FILE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported file type '{file_ext}'. "
                f"Accepted: {', '.join(settings.SUPPORTED_FILE_TYPES)}"
            ),
        )

    try:
        data = await _read_upload(file)
    except FileTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        )

    parsed = await DocumentParser().parse_document(data, filename)

    advanced = None
    if file_ext == ".pdf":
        advanced = await asyncio.to_thread(ImprovedPDFExtractor(data).structural_metadata)

    return VerifyExtractionResponse(
        filename=filename,
        file_type=file_ext.lstrip("."),
        file_size=len(data),
        extraction=ExtractionInfo(
            method=parsed.method,
            confidence=parsed.confidence,
            warnings=parsed.warnings,
        ),
        page_count=parsed.page_count,
        word_count=parsed.word_count,
        text_length=len(parsed.full_text),
        preview=truncate_text(parsed.full_text, PREVIEW_CHARS),
        metadata=parsed.metadata,
        advanced=advanced,
    )


# ---------------------------------------------------------------------------
# List + overview
# ---------------------------------------------------------------------------

@router.get("", response_model=List[DocumentResponse])
async def list_documents(
    status_filter: Optional[ProcessingStatus] = Query(None, alias="status"),
    community_id: Optional[int] = None,
    category: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> List[DocumentResponse]:
    """
    List documents newest first, hiding any above the caller's access level.

    Supports pagination via `skip` and `limit` query parameters.
    """
    query = select(Document).where(Document.cultural_sensitivity.in_(caller.levels))
    if status_filter is not None:
        query = query.where(Document.processing_status == status_filter)
    if community_id is not None:
        query = query.where(Document.community_id == community_id)
    if category is not None:
        query = query.where(Document.category == category)

    docs_result = await db.execute(
        query.order_by(Document.created_at.desc(), Document.id.desc()).offset(skip).limit(limit)
    )
    documents = docs_result.scalars().all()

    # Fetch chunk counts for all documents in a single GROUP BY query
    doc_ids = [d.id for d in documents]
    counts: Dict[int, int] = {}
    if doc_ids:
        counts_result = await db.execute(
            select(Chunk.document_id, func.count(Chunk.id).label("cnt"))
            .where(Chunk.document_id.in_(doc_ids))
            .group_by(Chunk.document_id)
        )
        counts = {row.document_id: row.cnt for row in counts_result}

    return [_document_response(doc, counts.get(doc.id, 0)) for doc in documents]


@router.get("/overview", response_model=DocumentOverviewResponse)
async def documents_overview(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> DocumentOverviewResponse:
    """Aggregate extraction and processing statistics over readable documents."""
    visible = Document.cultural_sensitivity.in_(caller.levels)

    async def _grouped(column) -> Dict[str, int]:
        rows = await db.execute(
            select(column, func.count(Document.id)).where(visible).group_by(column)
        )
        return {
            (key.value if hasattr(key, "value") else str(key)): count
            for key, count in rows.all()
            if key is not None
        }

    by_status = await _grouped(Document.processing_status)
    by_method = await _grouped(Document.extraction_method)
    by_sensitivity = await _grouped(Document.cultural_sensitivity)

    avg_result = await db.execute(select(func.avg(Document.extraction_confidence)).where(visible))
    avg_confidence = avg_result.scalar()

    low_result = await db.execute(
        select(func.count(Document.id)).where(
            visible,
            Document.extraction_confidence < settings.MIN_EXTRACTION_CONFIDENCE,
        )
    )

    visible_ids = select(Document.id).where(visible)
    chunk_total = await db.execute(
        select(func.count(Chunk.id)).where(Chunk.document_id.in_(visible_ids))
    )
    theme_total = await db.execute(
        select(func.count(DocumentTheme.id)).where(DocumentTheme.document_id.in_(visible_ids))
    )
    quote_total = await db.execute(
        select(func.count(DocumentQuote.id)).where(DocumentQuote.document_id.in_(visible_ids))
    )

    return DocumentOverviewResponse(
        total_documents=sum(by_status.values()),
        by_status=by_status,
        by_extraction_method=by_method,
        by_sensitivity=by_sensitivity,
        average_extraction_confidence=(
            round(float(avg_confidence), 3) if avg_confidence is not None else None
        ),
        low_confidence_count=low_result.scalar_one() or 0,
        total_chunks=chunk_total.scalar_one() or 0,
        total_themes=theme_total.scalar_one() or 0,
        total_quotes=quote_total.scalar_one() or 0,
    )


# ---------------------------------------------------------------------------
# Get / delete / chunks
# ---------------------------------------------------------------------------

@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Return metadata and chunk count for a single document."""
    document = await _get_readable_document(document_id, caller, db)

    count_result = await db.execute(
        select(func.count(Chunk.id)).where(Chunk.document_id == document_id)
    )
    chunk_count: int = count_result.scalar_one() or 0

    return _document_response(document, chunk_count)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
async def delete_document(
    document_id: int,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete a document, its chunks, its analysis and its file from disk.

    Only the uploader, an elder or an admin may delete.
    """
    document = await _get_readable_document(document_id, caller, db)

    if caller.role not in (UserRole.ELDER, UserRole.ADMIN) and document.uploaded_by != caller.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the uploader, an elder or an admin may delete this document.",
        )

    remove_stored_file(document.file_path)

    await db.delete(document)
    await db.commit()

    logger.info("Deleted document id=%d (%r) by user=%s", document_id, document.filename, caller.user_id)


@router.get("/{document_id}/chunks", response_model=List[ChunkResponse])
async def get_document_chunks(
    document_id: int,
    skip: int = 0,
    limit: int = 100,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> List[ChunkResponse]:
    """Return the document's chunks in reading order, with pagination."""
    await _get_readable_document(document_id, caller, db)

    chunks_result = await db.execute(
        select(Chunk)
        .where(Chunk.document_id == document_id)
        .order_by(Chunk.chunk_index)
        .offset(skip)
        .limit(limit)
    )
    return [ChunkResponse.model_validate(c) for c in chunks_result.scalars().all()]


# ---------------------------------------------------------------------------
# Process (embed + analyse)
# ---------------------------------------------------------------------------

@router.post("/{document_id}/process", response_model=ProcessDocumentResponse)
async def process_document(
    document_id: int,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ProcessDocumentResponse:
    """
    Embed and analyse a document in one synchronous call.

    1. Embed chunks that do not yet have a vector (skipped when the
       embedding service is down).
    2. Extract themes, quotes, insights, keywords and entities per chunk.
    3. Classify every theme and quote and raise the document's level.

    Refused with 409 while another run holds the document.
    """
    await _get_readable_document(document_id, caller, db)

    try:
        with job_manager.claim(document_id) as job_status:
            result = await processing_pipeline.process(document_id, db, status=job_status)
    except JobConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        )
    except Exception as exc:
        logger.exception("process_document: failed for id=%d", document_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Analysis failed: {exc}",
        )

    return ProcessDocumentResponse(
        document_id=result.document_id,
        status=result.status,
        embedded_chunks=result.embedded_chunks,
        total_chunks=result.total_chunks,
        chunks_analyzed=result.chunks_analyzed,
        chunks_skipped=result.chunks_skipped,
        themes_saved=result.themes_saved,
        quotes_saved=result.quotes_saved,
        insights_saved=result.insights_saved,
        keywords_saved=result.keywords_saved,
        entities_saved=result.entities_saved,
        cultural_sensitivity=result.cultural_sensitivity,
        requires_elder_review=result.requires_elder_review,
        errors=result.errors,
        processing_time_seconds=result.processing_time_seconds,
        message=result.message,
    )


@router.post(
    "/{document_id}/process-background",
    response_model=ProcessingJobStatus,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_document_background(
    document_id: int,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ProcessingJobStatus:
    """Start embedding + analysis as a background job; poll process-status."""
    document = await _get_readable_document(document_id, caller, db)

    count_result = await db.execute(
        select(func.count(Chunk.id)).where(Chunk.document_id == document.id)
    )
    chunks_total = count_result.scalar_one() or 0

    # Release the request transaction before the job opens its own session
    await db.commit()

    try:
        job_status = job_manager.submit(
            document_id,
            partial(processing_pipeline.process_in_background, document_id),
            chunks_total=chunks_total,
        )
    except JobConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        )
    return _job_response(job_status)


@router.get("/{document_id}/process-status", response_model=ProcessingJobStatus)
async def get_processing_status(
    document_id: int,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> ProcessingJobStatus:
    """Current phase and progress of the document's latest background job."""
    await _get_readable_document(document_id, caller, db)

    job_status = job_manager.get_status(document_id)
    if job_status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No processing job found for document {document_id}.",
        )
    return _job_response(job_status)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

@router.get("/{document_id}/review", response_model=DocumentReviewResponse)
async def review_document(
    document_id: int,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> DocumentReviewResponse:
    """
    Return a document's analysis arranged for manual verification.

    Themes are grouped by category with a confidence band, quotes by
    sensitivity level.  Themes and quotes above the caller's access level
    are left out.
    """
    document = await _get_readable_document(document_id, caller, db)

    themes = (
        await db.execute(
            select(DocumentTheme)
            .where(
                DocumentTheme.document_id == document_id,
                DocumentTheme.cultural_sensitivity.in_(caller.levels),
            )
            .order_by(DocumentTheme.confidence.desc())
        )
    ).scalars().all()
    quotes = (
        await db.execute(
            select(DocumentQuote)
            .where(
                DocumentQuote.document_id == document_id,
                DocumentQuote.cultural_sensitivity.in_(caller.levels),
            )
            .order_by(DocumentQuote.start_position.is_(None), DocumentQuote.start_position)
        )
    ).scalars().all()
    insights = (
        await db.execute(
            select(DocumentInsight)
            .where(DocumentInsight.document_id == document_id)
            .order_by(DocumentInsight.importance.desc())
        )
    ).scalars().all()
    keywords = (
        await db.execute(
            select(DocumentKeyword)
            .where(DocumentKeyword.document_id == document_id)
            .order_by(DocumentKeyword.frequency.desc())
        )
    ).scalars().all()

    themes_by_category: Dict[str, List[ThemeResponse]] = {}
    for theme in themes:
        item = ThemeResponse.model_validate(theme)
        item.confidence_level = DocumentAnalysisService.confidence_level(theme.confidence)
        themes_by_category.setdefault(theme.category, []).append(item)

    quotes_by_sensitivity: Dict[str, List[QuoteResponse]] = {}
    for quote in quotes:
        quotes_by_sensitivity.setdefault(quote.cultural_sensitivity.value, []).append(
            QuoteResponse.model_validate(quote)
        )

    verification = VerificationCounts(
        total_themes=len(themes),
        high_confidence=sum(1 for t in themes if t.confidence >= 0.8),
        medium_confidence=sum(1 for t in themes if 0.6 <= t.confidence < 0.8),
        low_confidence=sum(1 for t in themes if t.confidence < 0.6),
        duplicates=DocumentAnalysisService.find_duplicate_themes([t.name for t in themes]),
        needs_review=(
            sum(1 for t in themes if t.requires_elder_review and not t.elder_reviewed)
            + sum(1 for q in quotes if q.requires_elder_approval and q.elder_approved is None)
        ),
    )

    count_result = await db.execute(
        select(func.count(Chunk.id)).where(Chunk.document_id == document_id)
    )

    return DocumentReviewResponse(
        document=_document_response(document, count_result.scalar_one() or 0),
        themes_by_category=themes_by_category,
        quotes_by_sensitivity=quotes_by_sensitivity,
        insights=[InsightResponse.model_validate(i) for i in insights],
        keywords=[
            {"term": k.term, "frequency": k.frequency, "category": k.category}
            for k in keywords
        ],
        verification=verification,
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _get_readable_document(
    document_id: int,
    caller: Caller,
    db: AsyncSession,
) -> Document:
    """404 if the document does not exist, 403 if it is above the caller's level."""
    document = await db.get(Document, document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Document not found.",
        )
    if not caller.can_read(document.cultural_sensitivity):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Document is {document.cultural_sensitivity.value}; "
                f"role {caller.role.value} may not access it."
            ),
        )
    return document


async def _read_upload(upload: UploadFile) -> bytes:
    """Read an upload in 1 MB slices, stopping once MAX_FILE_SIZE is exceeded."""
    buffer = bytearray()
    while True:
        piece = await upload.read(1024 * 1024)
        if not piece:
            break
        buffer.extend(piece)
        if len(buffer) > settings.MAX_FILE_SIZE:
            raise FileTooLargeError(
                f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit."
            )
    return bytes(buffer)


def _document_response(document: Document, chunk_count: int) -> DocumentResponse:
    response = DocumentResponse.model_validate(document)
    response.chunk_count = chunk_count
    return response


def _job_response(job_status: JobStatus) -> ProcessingJobStatus:
    return ProcessingJobStatus(
        document_id=job_status.document_id,
        phase=job_status.phase.value,
        chunks_total=job_status.chunks_total,
        chunks_done=job_status.chunks_done,
        errors=list(job_status.errors),
        elapsed_seconds=job_status.elapsed_seconds,
        result=job_status.result,
    )
