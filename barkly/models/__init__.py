"""Database and schema models for the Barkly research platform."""
from barkly.models.database_models import (
    Community,
    User,
    Document,
    Chunk,
    DocumentTheme,
    DocumentQuote,
    DocumentInsight,
    DocumentKeyword,
    Entity,
    CulturalProtocol,
    ElderReview,
    CulturalReview,
    CulturalSensitivity,
    ProcessingStatus,
    ExtractionMethod,
    UserRole,
    ReviewStatus,
    ReviewDecision,
    Urgency,
    InsightCategory,
    EntityType,
)
from barkly.models.schemas import (
    CommunityCreate,
    CommunityResponse,
    DocumentResponse,
    UploadResponse,
    ThemeResponse,
    QuoteResponse,
    EntityResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Community",
    "User",
    "Document",
    "Chunk",
    "DocumentTheme",
    "DocumentQuote",
    "DocumentInsight",
    "DocumentKeyword",
    "Entity",
    "CulturalProtocol",
    "ElderReview",
    "CulturalReview",
    # Enums
    "CulturalSensitivity",
    "ProcessingStatus",
    "ExtractionMethod",
    "UserRole",
    "ReviewStatus",
    "ReviewDecision",
    "Urgency",
    "InsightCategory",
    "EntityType",
    # Pydantic schemas
    "CommunityCreate",
    "CommunityResponse",
    "DocumentResponse",
    "UploadResponse",
    "ThemeResponse",
    "QuoteResponse",
    "EntityResponse",
    "HealthCheckResponse",
]
