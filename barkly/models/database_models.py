"""
SQLAlchemy ORM models for the Barkly research database.
Includes pgvector support for chunk embeddings.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Float,
    Boolean,
    Enum as SQLEnum,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector
from datetime import datetime, timezone
import enum

from barkly.database import Base
from barkly.config import settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name: str):
    """Store enum *values* (lower-case strings) rather than member names."""
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


# Enums
class CulturalSensitivity(str, enum.Enum):
    """Access tier of a piece of content, least to most protected."""

    PUBLIC = "public"
    COMMUNITY = "community"
    RESTRICTED = "restricted"
    SACRED = "sacred"


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NEEDS_REVIEW = "needs_review"


class ExtractionMethod(str, enum.Enum):
    """Which extractor in the fallback chain produced a document's text."""

    PYMUPDF = "pymupdf"
    PYPDF = "pypdf"
    BUFFER_PARSE = "buffer_parse"
    OCR = "ocr"
    PYTHON_DOCX = "python_docx"
    RAW_XML = "raw_xml"
    PLAIN_TEXT = "plain_text"
    FAILED = "failed"


class UserRole(str, enum.Enum):
    PUBLIC = "public"
    MEMBER = "member"
    RESEARCHER = "researcher"
    ELDER = "elder"
    ADMIN = "admin"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"


class ReviewDecision(str, enum.Enum):
    APPROVED = "approved"
    APPROVED_WITH_CONDITIONS = "approved_with_conditions"
    REJECTED = "rejected"
    NEEDS_CHANGES = "needs_changes"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InsightCategory(str, enum.Enum):
    OPPORTUNITY = "opportunity"
    CHALLENGE = "challenge"
    RECOMMENDATION = "recommendation"


class EntityType(str, enum.Enum):
    PERSON = "person"
    ORGANIZATION = "organization"
    LOCATION = "location"
    CONCEPT = "concept"
    EVENT = "event"
    PRODUCT = "product"
    SERVICE = "service"
    METHOD = "method"
    TOOL = "tool"


# Models
class Community(Base):
    """A community whose documents and protocols are managed together."""

    __tablename__ = "communities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    region = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    # Relationships
    documents = relationship("Document", back_populates="community")
    protocols = relationship("CulturalProtocol", back_populates="community", cascade="all, delete-orphan")


class User(Base):
    """User account, identified by the id the frontend sends in X-User-Id."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    role = Column(_enum_column(UserRole, "user_role"), nullable=False, default=UserRole.MEMBER)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)


class Document(Base):
    """Uploaded document with its extracted text and extraction diagnostics."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True)
    uploaded_by = Column(String(255), nullable=True)
    filename = Column(String(255), nullable=False)
    file_path = Column(String(512), nullable=False)
    file_type = Column(String(50), nullable=False)  # pdf, docx, txt, md
    file_size = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=True)
    source = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=True)

    content_text = Column(Text, nullable=True)
    page_count = Column(Integer, nullable=False, default=0)
    word_count = Column(Integer, nullable=False, default=0)
    summary = Column(Text, nullable=True)

    # Extraction diagnostics
    extraction_method = Column(_enum_column(ExtractionMethod, "extraction_method"), nullable=True)
    extraction_confidence = Column(Float, nullable=True)
    extraction_warnings = Column(JSON, nullable=True)

    processing_status = Column(
        _enum_column(ProcessingStatus, "processing_status"),
        nullable=False,
        default=ProcessingStatus.PENDING,
        index=True,
    )
    processing_error = Column(Text, nullable=True)

    # Cultural safety
    cultural_sensitivity = Column(
        _enum_column(CulturalSensitivity, "cultural_sensitivity"),
        nullable=False,
        default=CulturalSensitivity.COMMUNITY,
        index=True,
    )
    requires_elder_review = Column(Boolean, nullable=False, default=False)
    elder_approved = Column(Boolean, nullable=True)

    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    community = relationship("Community", back_populates="documents")
    chunks = relationship("Chunk", back_populates="document", cascade="all, delete-orphan")
    themes = relationship("DocumentTheme", back_populates="document", cascade="all, delete-orphan")
    quotes = relationship("DocumentQuote", back_populates="document", cascade="all, delete-orphan")
    insights = relationship("DocumentInsight", back_populates="document", cascade="all, delete-orphan")
    keywords = relationship("DocumentKeyword", back_populates="document", cascade="all, delete-orphan")
    entities = relationship("Entity", back_populates="document", cascade="all, delete-orphan")


class Chunk(Base):
    """A character-offset slice of a document's text."""

    __tablename__ = "document_chunks"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    start_char = Column(Integer, nullable=False)
    end_char = Column(Integer, nullable=False)
    start_page = Column(Integer, nullable=True)
    end_page = Column(Integer, nullable=True)
    word_count = Column(Integer, nullable=False, default=0)
    embedding = Column(Vector(settings.VECTOR_DIMENSION), nullable=True)
    metadata_json = Column(JSON, nullable=True)  # has_headers, content_type, section_title

    # Relationships
    document = relationship("Document", back_populates="chunks")


class DocumentTheme(Base):
    """A theme aggregated over every chunk of one document."""

    __tablename__ = "document_themes"
    __table_args__ = (UniqueConstraint("document_id", "slug", name="uq_document_theme_slug"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False, default="general")
    description = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    evidence = Column(Text, nullable=True)
    evidence_count = Column(Integer, nullable=False, default=1)
    supporting_chunks = Column(JSON, nullable=True)  # chunk indices
    cultural_sensitivity = Column(
        _enum_column(CulturalSensitivity, "cultural_sensitivity"),
        nullable=False,
        default=CulturalSensitivity.PUBLIC,
    )
    requires_elder_review = Column(Boolean, nullable=False, default=False)
    elder_reviewed = Column(Boolean, nullable=False, default=False)
    ai_model = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="themes")


class DocumentQuote(Base):
    """A verbatim quote located in the document text."""

    __tablename__ = "document_quotes"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=True)
    quote_text = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    significance = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    # Character offsets into Document.content_text; null when the quote
    # could not be found verbatim
    start_position = Column(Integer, nullable=True)
    end_position = Column(Integer, nullable=True)
    page_number = Column(Integer, nullable=True)
    speaker_name = Column(String(255), nullable=True)
    cultural_sensitivity = Column(
        _enum_column(CulturalSensitivity, "cultural_sensitivity"),
        nullable=False,
        default=CulturalSensitivity.PUBLIC,
    )
    requires_elder_approval = Column(Boolean, nullable=False, default=False)
    elder_approved = Column(Boolean, nullable=True)
    ai_model = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="quotes")


class DocumentInsight(Base):
    __tablename__ = "document_insights"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    category = Column(_enum_column(InsightCategory, "insight_category"), nullable=False)
    importance = Column(Integer, nullable=False, default=5)  # 1-10
    confidence = Column(Float, nullable=False, default=0.0)
    evidence = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="insights")


class DocumentKeyword(Base):
    __tablename__ = "document_keywords"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    term = Column(String(255), nullable=False)
    frequency = Column(Integer, nullable=False, default=1)
    category = Column(String(50), nullable=False, default="general")

    document = relationship("Document", back_populates="keywords")


class Entity(Base):
    """A named entity mentioned in a document, merged across chunks."""

    __tablename__ = "entities"

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    canonical_name = Column(String(255), nullable=False, index=True)
    entity_type = Column(_enum_column(EntityType, "entity_type"), nullable=False, index=True)
    confidence = Column(Float, nullable=False, default=0.0)
    mentions = Column(Integer, nullable=False, default=1)
    contexts = Column(JSON, nullable=True)
    importance = Column(Integer, nullable=False, default=5)  # 1-10
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    document = relationship("Document", back_populates="entities")


class CulturalProtocol(Base):
    """A community rule restricting how certain content may be used."""

    __tablename__ = "cultural_protocols"

    id = Column(Integer, primary_key=True, index=True)
    # Null means the protocol applies to every community
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    protocol_type = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    applicable_content = Column(JSON, nullable=True)
    restrictions = Column(JSON, nullable=True)
    required_approvals = Column(JSON, nullable=True)
    consequences = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    community = relationship("Community", back_populates="protocols")


class ElderReview(Base):
    """One elder's review of one piece of content."""

    __tablename__ = "elder_reviews"

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, nullable=False, index=True)
    content_type = Column(String(50), nullable=False)  # document, theme, quote
    elder_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String(255), nullable=True)
    status = Column(_enum_column(ReviewStatus, "review_status"), nullable=False, default=ReviewStatus.PENDING)
    urgency = Column(_enum_column(Urgency, "urgency"), nullable=False, default=Urgency.MEDIUM)
    cultural_concerns = Column(JSON, nullable=True)
    decision = Column(_enum_column(ReviewDecision, "review_decision"), nullable=True)
    concerns = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)
    protocol_violations = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    review_date = Column(DateTime(timezone=True), nullable=True)


class CulturalReview(Base):
    """Cultural safety assessment of one piece of content."""

    __tablename__ = "cultural_reviews"

    id = Column(Integer, primary_key=True, index=True)
    content_id = Column(Integer, nullable=False, index=True)
    content_type = Column(String(50), nullable=False)
    community_id = Column(Integer, ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True)
    sensitivity_level = Column(_enum_column(CulturalSensitivity, "cultural_sensitivity"), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    flags = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)
    protocol_violations = Column(JSON, nullable=True)
    priority = Column(String(20), nullable=False, default="medium")
    review_type = Column(String(20), nullable=False, default="automatic")
    status = Column(_enum_column(ReviewStatus, "review_status"), nullable=False, default=ReviewStatus.PENDING)
    escalated = Column(Boolean, nullable=False, default=False)
    estimated_review_hours = Column(Integer, nullable=False, default=2)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
