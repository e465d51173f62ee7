"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime

from barkly.models.database_models import (
    CulturalSensitivity,
    EntityType,
    ExtractionMethod,
    InsightCategory,
    ProcessingStatus,
    ReviewDecision,
    ReviewStatus,
    Urgency,
)


# Community Schemas
class CommunityCreate(BaseModel):
    """Schema for creating a community."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    region: Optional[str] = None


class CommunityResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    region: Optional[str] = None
    document_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Document Schemas
class ExtractionInfo(BaseModel):
    """Which extractor produced a document's text and how much to trust it."""

    method: ExtractionMethod
    confidence: float
    warnings: List[str] = []


class UploadFileResult(BaseModel):
    """Outcome for one file of a multi-file upload."""

    filename: str
    success: bool
    document_id: Optional[int] = None
    status: Optional[ProcessingStatus] = None
    cultural_sensitivity: Optional[CulturalSensitivity] = None
    requires_elder_review: bool = False
    extraction: Optional[ExtractionInfo] = None
    page_count: int = 0
    word_count: int = 0
    chunk_count: int = 0
    themes_found: int = 0
    quotes_found: int = 0
    error: Optional[str] = None


class UploadResponse(BaseModel):
    total_files: int
    successful: int
    failed: int
    results: List[UploadFileResult]


class DocumentResponse(BaseModel):
    """Schema for document details."""

    id: int
    community_id: Optional[int] = None
    filename: str
    file_type: str
    file_size: int = 0
    category: Optional[str] = None
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    page_count: int = 0
    word_count: int = 0
    summary: Optional[str] = None
    extraction_method: Optional[ExtractionMethod] = None
    extraction_confidence: Optional[float] = None
    extraction_warnings: Optional[List[str]] = None
    processing_status: ProcessingStatus
    processing_error: Optional[str] = None
    cultural_sensitivity: CulturalSensitivity
    requires_elder_review: bool = False
    elder_approved: Optional[bool] = None
    metadata_json: Optional[Dict[str, Any]] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    chunk_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class ChunkResponse(BaseModel):
    id: int
    document_id: int
    chunk_index: int
    content: str
    start_char: int
    end_char: int
    start_page: Optional[int] = None
    end_page: Optional[int] = None
    word_count: int = 0
    metadata_json: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class VerifyExtractionResponse(BaseModel):
    """Extraction diagnostics for a file that is not stored."""

    filename: str
    file_type: str
    file_size: int
    extraction: ExtractionInfo
    page_count: int
    word_count: int
    text_length: int
    preview: str
    metadata: Dict[str, Any] = {}
    advanced: Optional[Dict[str, Any]] = None


class DocumentOverviewResponse(BaseModel):
    total_documents: int
    by_status: Dict[str, int]
    by_extraction_method: Dict[str, int]
    by_sensitivity: Dict[str, int]
    average_extraction_confidence: Optional[float] = None
    low_confidence_count: int = 0
    total_chunks: int = 0
    total_themes: int = 0
    total_quotes: int = 0


class ProcessDocumentResponse(BaseModel):
    document_id: int
    status: ProcessingStatus
    embedded_chunks: int = 0
    total_chunks: int = 0
    chunks_analyzed: int = 0
    chunks_skipped: int = 0
    themes_saved: int = 0
    quotes_saved: int = 0
    insights_saved: int = 0
    keywords_saved: int = 0
    entities_saved: int = 0
    cultural_sensitivity: CulturalSensitivity
    requires_elder_review: bool = False
    errors: List[str] = []
    processing_time_seconds: float = 0.0
    message: str


class ProcessingJobStatus(BaseModel):
    document_id: int
    phase: str
    chunks_total: int = 0
    chunks_done: int = 0
    errors: List[str] = []
    elapsed_seconds: float = 0.0
    result: Optional[Dict[str, Any]] = None


# Review Schemas
class ThemeResponse(BaseModel):
    id: int
    name: str
    slug: str
    category: str
    description: Optional[str] = None
    confidence: float
    confidence_level: str = ""
    evidence: Optional[str] = None
    evidence_count: int = 1
    supporting_chunks: Optional[List[int]] = None
    cultural_sensitivity: CulturalSensitivity
    requires_elder_review: bool = False
    elder_reviewed: bool = False

    model_config = ConfigDict(from_attributes=True)


class QuoteResponse(BaseModel):
    id: int
    quote_text: str
    context: Optional[str] = None
    significance: Optional[str] = None
    confidence: float
    chunk_index: Optional[int] = None
    start_position: Optional[int] = None
    end_position: Optional[int] = None
    page_number: Optional[int] = None
    speaker_name: Optional[str] = None
    cultural_sensitivity: CulturalSensitivity
    requires_elder_approval: bool = False
    elder_approved: Optional[bool] = None

    model_config = ConfigDict(from_attributes=True)


class InsightResponse(BaseModel):
    id: int
    text: str
    category: InsightCategory
    importance: int
    confidence: float
    evidence: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class VerificationCounts(BaseModel):
    """Theme confidence bands used when checking an analysis by hand."""

    total_themes: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    duplicates: List[str] = []
    needs_review: int = 0


class DocumentReviewResponse(BaseModel):
    document: DocumentResponse
    themes_by_category: Dict[str, List[ThemeResponse]]
    quotes_by_sensitivity: Dict[str, List[QuoteResponse]]
    insights: List[InsightResponse]
    keywords: List[Dict[str, Any]]
    verification: VerificationCounts


# Cultural Schemas
class CulturalAnalysisRequest(BaseModel):
    content: str = Field(..., min_length=1)
    content_type: str = "document"


class CulturalAnalysisResponse(BaseModel):
    level: CulturalSensitivity
    confidence: float
    flags: List[str]
    recommendations: List[str]
    review_required: bool
    elder_approval_required: bool
    estimated_review_hours: int
    priority: str
    protocol_violations: List[str] = []
    required_approvals: List[str] = []


class ProtocolCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    protocol_type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    applicable_content: List[str] = []
    restrictions: List[str] = []
    required_approvals: List[str] = []
    consequences: Optional[str] = None
    community_id: Optional[int] = None
    is_active: bool = True


class ProtocolResponse(BaseModel):
    id: int
    community_id: Optional[int] = None
    name: str
    protocol_type: str
    description: Optional[str] = None
    applicable_content: Optional[List[str]] = None
    restrictions: Optional[List[str]] = None
    required_approvals: Optional[List[str]] = None
    consequences: Optional[str] = None
    is_active: bool = True
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ElderReviewSubmit(BaseModel):
    content_id: int
    content_type: str = "document"
    elder_ids: List[str] = Field(..., min_length=1)
    cultural_concerns: List[str] = []
    urgency: Urgency = Urgency.MEDIUM


class ElderReviewSubmitResponse(BaseModel):
    review_ids: List[int]
    skipped_elder_ids: List[str] = []


class ElderReviewComplete(BaseModel):
    decision: ReviewDecision
    concerns: List[str] = []
    recommendations: List[str] = []
    protocol_violations: List[str] = []
    notes: Optional[str] = None


class ElderReviewResponse(BaseModel):
    id: int
    content_id: int
    content_type: str
    elder_id: str
    requested_by: Optional[str] = None
    status: ReviewStatus
    urgency: Urgency
    cultural_concerns: Optional[List[str]] = None
    decision: Optional[ReviewDecision] = None
    concerns: Optional[List[str]] = None
    recommendations: Optional[List[str]] = None
    protocol_violations: Optional[List[str]] = None
    notes: Optional[str] = None
    created_at: datetime
    review_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CulturalStatsResponse(BaseModel):
    total_reviews: int
    by_level: Dict[str, int]
    by_status: Dict[str, int]
    elder_reviews: int
    pending_elder_reviews: int
    escalations: int
    average_review_time_hours: Optional[float] = None


# Entity Schemas
class EntityResponse(BaseModel):
    id: int
    document_id: int
    name: str
    canonical_name: str
    entity_type: EntityType
    confidence: float
    mentions: int
    contexts: Optional[List[str]] = None
    importance: int

    model_config = ConfigDict(from_attributes=True)


class EntityAnalyticsResponse(BaseModel):
    total_entities: int
    by_type: Dict[str, int]
    top_entities: List[Dict[str, Any]]


# Search Schemas
class SearchResult(BaseModel):
    chunk_id: int
    document_id: int
    chunk_index: int
    content: str
    filename: str
    start_char: Optional[int] = None
    end_char: Optional[int] = None
    similarity: Optional[float] = None


class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    llm: str
    timestamp: datetime
