"""
Cultural safety classification, access rules and the elder review workflow.

Sensitivity levels, least to most protected:

    public  <  community  <  restricted  <  sacred

Content is classified with keyword lists; a user's role decides which levels
they may see.  Restricted and sacred content needs elder approval before it
is shared, which is tracked through ElderReview rows.  CulturalReview rows
record every assessment (automatic or elder) and feed the statistics.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.config import settings
from barkly.models.database_models import (
    CulturalProtocol,
    CulturalReview,
    CulturalSensitivity,
    Document,
    DocumentQuote,
    DocumentTheme,
    ElderReview,
    ProcessingStatus,
    ReviewDecision,
    ReviewStatus,
    Urgency,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Level definitions
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class CulturalSafetyLevel:
    level: CulturalSensitivity
    description: str
    access_rules: Tuple[str, ...]
    review_required: bool
    elder_approval_required: bool


CULTURAL_SAFETY_LEVELS: Dict[CulturalSensitivity, CulturalSafetyLevel] = {
    CulturalSensitivity.PUBLIC: CulturalSafetyLevel(
        level=CulturalSensitivity.PUBLIC,
        description="Content safe for general public viewing with no cultural restrictions",
        access_rules=("Available to all users", "No special permissions required"),
        review_required=False,
        elder_approval_required=False,
    ),
    CulturalSensitivity.COMMUNITY: CulturalSafetyLevel(
        level=CulturalSensitivity.COMMUNITY,
        description="Content appropriate for community members with basic cultural context",
        access_rules=("Available to registered community members", "Cultural context provided"),
        review_required=True,
        elder_approval_required=False,
    ),
    CulturalSensitivity.RESTRICTED: CulturalSafetyLevel(
        level=CulturalSensitivity.RESTRICTED,
        description="Culturally sensitive content requiring special permissions and context",
        access_rules=(
            "Requires specific permissions",
            "Cultural authority approval needed",
            "Limited sharing",
        ),
        review_required=True,
        elder_approval_required=True,
    ),
    CulturalSensitivity.SACRED: CulturalSafetyLevel(
        level=CulturalSensitivity.SACRED,
        description="Sacred or highly sensitive cultural content with strict access controls",
        access_rules=(
            "Elder approval required",
            "Ceremony or protocol specific",
            "No sharing without permission",
        ),
        review_required=True,
        elder_approval_required=True,
    ),
}

LEVEL_ORDER: List[CulturalSensitivity] = [
    CulturalSensitivity.PUBLIC,
    CulturalSensitivity.COMMUNITY,
    CulturalSensitivity.RESTRICTED,
    CulturalSensitivity.SACRED,
]

# Highest level each role may read
ROLE_MAX_LEVEL: Dict[UserRole, CulturalSensitivity] = {
    UserRole.PUBLIC: CulturalSensitivity.PUBLIC,
    UserRole.MEMBER: CulturalSensitivity.COMMUNITY,
    UserRole.RESEARCHER: CulturalSensitivity.RESTRICTED,
    UserRole.ELDER: CulturalSensitivity.SACRED,
    UserRole.ADMIN: CulturalSensitivity.SACRED,
}

SACRED_KEYWORDS = (
    "sacred", "ceremony", "ritual", "traditional law", "secret",
    "men only", "women only", "initiation",
)
RESTRICTED_KEYWORDS = (
    "cultural protocol", "traditional knowledge", "elder", "ancestor",
    "spiritual", "cultural practice",
)
COMMUNITY_KEYWORDS = (
    "community story", "local knowledge", "cultural context", "traditional", "cultural",
)
SENSITIVE_KEYWORDS = ("sorry business", "deceased", "funeral", "mourning", "grief", "loss")

REVIEW_HOURS: Dict[CulturalSensitivity, int] = {
    CulturalSensitivity.SACRED: 72,      # elder consultation
    CulturalSensitivity.RESTRICTED: 24,  # cultural authority review
    CulturalSensitivity.COMMUNITY: 8,
    CulturalSensitivity.PUBLIC: 2,
}


@dataclasses.dataclass
class CulturalAnalysis:
    """Result of classifying one piece of content."""

    level: CulturalSensitivity
    confidence: float
    flags: List[str]
    recommendations: List[str]

    @property
    def review_required(self) -> bool:
        return CULTURAL_SAFETY_LEVELS[self.level].review_required

    @property
    def elder_approval_required(self) -> bool:
        return CULTURAL_SAFETY_LEVELS[self.level].elder_approval_required


@dataclasses.dataclass
class ProtocolCheck:
    compliant: bool
    violations: List[str]
    required_approvals: List[str]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def analyze_cultural_safety(content: str, content_type: str = "document") -> CulturalAnalysis:
    """
    Classify *content* by the first keyword tier it matches.

    Sacred wins over restricted, restricted over community.  Mentions of
    sorry business and loss add a flag and lift public content to community.
    """
    lower = (content or "").lower()
    flags: List[str] = []
    level = CulturalSensitivity.PUBLIC
    confidence = 0.7

    if any(k in lower for k in SACRED_KEYWORDS):
        level = CulturalSensitivity.SACRED
        confidence = 0.9
        flags.append("Contains sacred or ceremonial content")
    elif any(k in lower for k in RESTRICTED_KEYWORDS):
        level = CulturalSensitivity.RESTRICTED
        confidence = 0.8
        flags.append("Contains traditional knowledge or cultural protocols")
    elif any(k in lower for k in COMMUNITY_KEYWORDS):
        level = CulturalSensitivity.COMMUNITY
        flags.append("Contains community-specific cultural content")

    if any(k in lower for k in SENSITIVE_KEYWORDS):
        flags.append("Contains culturally sensitive content requiring careful handling")
        if level == CulturalSensitivity.PUBLIC:
            level = CulturalSensitivity.COMMUNITY

    return CulturalAnalysis(
        level=level,
        confidence=confidence,
        flags=flags,
        recommendations=_recommendations(level, content_type),
    )


def _recommendations(level: CulturalSensitivity, content_type: str) -> List[str]:
    recommendations: List[str]
    if level == CulturalSensitivity.SACRED:
        recommendations = [
            "Requires elder approval before any sharing or publication",
            "Must follow traditional protocols for sacred content",
            "Consider if this content should be shared at all",
        ]
    elif level == CulturalSensitivity.RESTRICTED:
        recommendations = [
            "Requires cultural authority review",
            "Provide appropriate cultural context when sharing",
            "Limit access to authorized community members",
        ]
    elif level == CulturalSensitivity.COMMUNITY:
        recommendations = [
            "Include cultural context and background information",
            "Ensure community members can provide feedback",
            "Consider cultural protocols for sharing",
        ]
    else:
        recommendations = [
            "Content appears culturally safe for public sharing",
            "Monitor for community feedback on cultural appropriateness",
        ]

    if content_type == "story":
        recommendations.append("Ensure storyteller has given appropriate permissions")
        recommendations.append("Consider traditional storytelling protocols")
    elif content_type == "document":
        recommendations.append("Review document for cultural references and context")
    return recommendations


def estimated_review_hours(level: CulturalSensitivity) -> int:
    return REVIEW_HOURS.get(level, 24)


def review_priority(level: CulturalSensitivity) -> str:
    if level == CulturalSensitivity.SACRED:
        return "urgent"
    if level == CulturalSensitivity.RESTRICTED:
        return "high"
    return "medium"


def max_level(levels: Iterable[CulturalSensitivity]) -> CulturalSensitivity:
    """Most protected level in *levels*; public when empty."""
    return max(levels, key=LEVEL_ORDER.index, default=CulturalSensitivity.PUBLIC)


def allowed_levels(role: UserRole) -> List[CulturalSensitivity]:
    ceiling = ROLE_MAX_LEVEL.get(role, CulturalSensitivity.PUBLIC)
    return LEVEL_ORDER[: LEVEL_ORDER.index(ceiling) + 1]


def can_access(role: UserRole, level: CulturalSensitivity) -> bool:
    return level in allowed_levels(role)


def check_protocol_compliance(
    content: str,
    protocols: Sequence[CulturalProtocol],
) -> ProtocolCheck:
    """Flag every active protocol restriction that appears in *content*."""
    lower = (content or "").lower()
    violations: List[str] = []
    approvals: List[str] = []

    for protocol in protocols:
        if not protocol.is_active:
            continue
        for restriction in protocol.restrictions or []:
            if restriction and restriction.lower() in lower:
                violations.append(f"Violates {protocol.name}: {restriction}")
                for approval in protocol.required_approvals or []:
                    if approval not in approvals:
                        approvals.append(approval)

    return ProtocolCheck(
        compliant=not violations,
        violations=violations,
        required_approvals=approvals,
    )


# ---------------------------------------------------------------------------
# Database operations
# ---------------------------------------------------------------------------

async def get_active_protocols(
    db: AsyncSession,
    content_type: Optional[str] = None,
    community_id: Optional[int] = None,
) -> List[CulturalProtocol]:
    """Active protocols for a community plus the global ones (community_id null)."""
    query = select(CulturalProtocol).where(CulturalProtocol.is_active.is_(True))
    if community_id is not None:
        query = query.where(
            or_(
                CulturalProtocol.community_id == community_id,
                CulturalProtocol.community_id.is_(None),
            )
        )
    result = await db.execute(query.order_by(CulturalProtocol.id))
    protocols = list(result.scalars().all())

    # JSON columns are not portably queryable, so filter content types here
    if content_type:
        protocols = [
            p for p in protocols
            if not p.applicable_content or content_type in p.applicable_content
        ]
    return protocols


async def submit_for_cultural_review(
    db: AsyncSession,
    content_id: int,
    content_type: str,
    content: str,
    community_id: Optional[int] = None,
    analysis: Optional[CulturalAnalysis] = None,
) -> CulturalReview:
    """Record an automatic assessment of *content* and return the review row."""
    if analysis is None:
        analysis = analyze_cultural_safety(content, content_type)

    protocols = await get_active_protocols(db, content_type, community_id)
    check = check_protocol_compliance(content, protocols)

    review = CulturalReview(
        content_id=content_id,
        content_type=content_type,
        community_id=community_id,
        sensitivity_level=analysis.level,
        confidence=analysis.confidence,
        flags=analysis.flags,
        recommendations=analysis.recommendations,
        protocol_violations=check.violations,
        priority=review_priority(analysis.level),
        review_type="automatic",
        status=ReviewStatus.PENDING,
        escalated=analysis.level in (CulturalSensitivity.SACRED, CulturalSensitivity.RESTRICTED),
        estimated_review_hours=estimated_review_hours(analysis.level),
    )
    db.add(review)
    await db.flush()
    logger.info(
        "Cultural review %d filed for %s %d: level=%s, %d violation(s)",
        review.id,
        content_type,
        content_id,
        analysis.level.value,
        len(check.violations),
    )
    return review


async def submit_for_elder_review(
    db: AsyncSession,
    content_id: int,
    content_type: str,
    elder_ids: Sequence[str],
    cultural_concerns: Sequence[str],
    urgency: Urgency = Urgency.MEDIUM,
    requested_by: Optional[str] = None,
) -> Tuple[List[int], List[str]]:
    """
    Create one pending ElderReview per elder.

    Ids that do not belong to a user with the elder role are skipped.
    Returns ``(created_review_ids, skipped_elder_ids)``.
    """
    result = await db.execute(
        select(User.id).where(User.id.in_(list(elder_ids)), User.role == UserRole.ELDER)
    )
    elders = set(result.scalars().all())

    review_ids: List[int] = []
    skipped: List[str] = []
    for elder_id in elder_ids:
        if elder_id not in elders:
            logger.warning("Elder review: %r is not an elder, skipping", elder_id)
            skipped.append(elder_id)
            continue
        review = ElderReview(
            content_id=content_id,
            content_type=content_type,
            elder_id=elder_id,
            requested_by=requested_by,
            status=ReviewStatus.PENDING,
            urgency=urgency,
            cultural_concerns=list(cultural_concerns),
        )
        db.add(review)
        await db.flush()
        review_ids.append(review.id)

    logger.info(
        "Elder review for %s %d: %d created, %d skipped",
        content_type,
        content_id,
        len(review_ids),
        len(skipped),
    )
    return review_ids, skipped


async def complete_elder_review(
    db: AsyncSession,
    review: ElderReview,
    decision: ReviewDecision,
    concerns: Sequence[str] = (),
    recommendations: Sequence[str] = (),
    protocol_violations: Sequence[str] = (),
    notes: Optional[str] = None,
) -> ElderReview:
    """
    Record an elder's decision.

    For document content the document's ``elder_approved`` flag and status
    follow the decision.  Raises ValueError if the review is already complete.
    """
    if review.status == ReviewStatus.COMPLETED:
        raise ValueError(f"Elder review {review.id} is already completed")

    now = datetime.now(timezone.utc)
    review.decision = decision
    review.concerns = list(concerns)
    review.recommendations = list(recommendations)
    review.protocol_violations = list(protocol_violations)
    review.notes = notes
    review.review_date = now
    review.status = ReviewStatus.COMPLETED

    level = CulturalSensitivity.RESTRICTED
    community_id = None
    if review.content_type == "document":
        document = await db.get(Document, review.content_id)
        if document is not None:
            level = document.cultural_sensitivity
            community_id = document.community_id
            _apply_decision(document, decision)

    # Close the automatic assessments for this content
    result = await db.execute(
        select(CulturalReview).where(
            CulturalReview.content_id == review.content_id,
            CulturalReview.content_type == review.content_type,
            CulturalReview.status != ReviewStatus.COMPLETED,
        )
    )
    for pending in result.scalars().all():
        pending.status = ReviewStatus.COMPLETED
        pending.reviewed_at = now

    db.add(
        CulturalReview(
            content_id=review.content_id,
            content_type=review.content_type,
            community_id=community_id,
            sensitivity_level=level,
            confidence=1.0,
            flags=list(concerns),
            recommendations=list(recommendations),
            protocol_violations=list(protocol_violations),
            priority=review_priority(level),
            review_type="elder",
            status=ReviewStatus.COMPLETED,
            escalated=bool(protocol_violations),
            estimated_review_hours=estimated_review_hours(level),
            created_at=review.created_at,
            reviewed_at=now,
        )
    )
    await db.flush()
    logger.info(
        "Elder review %d completed by %s: %s", review.id, review.elder_id, decision.value
    )
    return review


def _apply_decision(document: Document, decision: ReviewDecision) -> None:
    if decision in (ReviewDecision.APPROVED, ReviewDecision.APPROVED_WITH_CONDITIONS):
        document.elder_approved = True
        # Approval does not clear a low-confidence extraction
        low_confidence = (
            document.extraction_confidence is not None
            and document.extraction_confidence < settings.MIN_EXTRACTION_CONFIDENCE
        )
        if document.processing_status == ProcessingStatus.NEEDS_REVIEW and not low_confidence:
            document.processing_status = ProcessingStatus.COMPLETED
    elif decision == ReviewDecision.REJECTED:
        document.elder_approved = False
        document.processing_status = ProcessingStatus.NEEDS_REVIEW


async def get_cultural_safety_stats(
    db: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    community_id: Optional[int] = None,
) -> Dict[str, object]:
    """Aggregate CulturalReview rows created in ``[start, end]``."""
    query = select(CulturalReview)
    if start is not None:
        query = query.where(CulturalReview.created_at >= start)
    if end is not None:
        query = query.where(CulturalReview.created_at <= end)
    if community_id is not None:
        query = query.where(CulturalReview.community_id == community_id)
    reviews = (await db.execute(query)).scalars().all()

    by_level: Dict[str, int] = {}
    by_status: Dict[str, int] = {}
    durations: List[float] = []
    for review in reviews:
        by_level[review.sensitivity_level.value] = by_level.get(review.sensitivity_level.value, 0) + 1
        by_status[review.status.value] = by_status.get(review.status.value, 0) + 1
        if review.reviewed_at is not None and review.created_at is not None:
            durations.append(_hours_between(review.created_at, review.reviewed_at))

    pending_query = select(func.count(ElderReview.id)).where(
        ElderReview.status == ReviewStatus.PENDING
    )
    if start is not None:
        pending_query = pending_query.where(ElderReview.created_at >= start)
    if end is not None:
        pending_query = pending_query.where(ElderReview.created_at <= end)
    if community_id is not None:
        pending_query = pending_query.where(_in_community(community_id))
    pending_elder = (await db.execute(pending_query)).scalar_one()

    return {
        "total_reviews": len(reviews),
        "by_level": by_level,
        "by_status": by_status,
        "elder_reviews": sum(1 for r in reviews if r.review_type == "elder"),
        "pending_elder_reviews": pending_elder,
        "escalations": sum(1 for r in reviews if r.escalated),
        "average_review_time_hours": (
            round(sum(durations) / len(durations), 2) if durations else None
        ),
    }


def _in_community(community_id: int):
    """Elder reviews whose document, theme or quote belongs to *community_id*."""
    documents = select(Document.id).where(Document.community_id == community_id)
    themes = select(DocumentTheme.id).where(DocumentTheme.document_id.in_(documents))
    quotes = select(DocumentQuote.id).where(DocumentQuote.document_id.in_(documents))
    return or_(
        and_(ElderReview.content_type == "document", ElderReview.content_id.in_(documents)),
        and_(ElderReview.content_type == "theme", ElderReview.content_id.in_(themes)),
        and_(ElderReview.content_type == "quote", ElderReview.content_id.in_(quotes)),
    )


def _hours_between(start: datetime, end: datetime) -> float:
    # SQLite hands back naive datetimes; compare like with like
    if start.tzinfo is None or end.tzinfo is None:
        start = start.replace(tzinfo=None)
        end = end.replace(tzinfo=None)
    return max(0.0, (end - start).total_seconds() / 3600)
