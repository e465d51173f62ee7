"""
Cultural safety endpoints: protocols, content analysis and elder review.

GET  /protocols                      — active protocols.
POST /protocols                      — create a protocol (elder or admin).
POST /analyze                        — classify text and check it against protocols.
GET  /elder-reviews                  — reviews assigned to the calling elder.
POST /elder-reviews                  — request review of content by elders.
POST /elder-reviews/{id}/complete    — record an elder's decision.
GET  /stats                          — cultural review statistics.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.database import get_db
from barkly.dependencies.auth import Caller, require_role, require_user
from barkly.models.database_models import (
    Community,
    CulturalProtocol,
    Document,
    ElderReview,
    ReviewStatus,
    UserRole,
)
from barkly.models.schemas import (
    CulturalAnalysisRequest,
    CulturalAnalysisResponse,
    CulturalStatsResponse,
    ElderReviewComplete,
    ElderReviewResponse,
    ElderReviewSubmit,
    ElderReviewSubmitResponse,
    ProtocolCreate,
    ProtocolResponse,
)
from barkly.services import cultural_safety

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@router.get("/protocols", response_model=List[ProtocolResponse])
async def list_protocols(
    community_id: Optional[int] = None,
    content_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
) -> List[ProtocolResponse]:
    """Active protocols for *community_id* (plus global ones), optionally by content type."""
    protocols = await cultural_safety.get_active_protocols(db, content_type, community_id)
    return [ProtocolResponse.model_validate(p) for p in protocols]


@router.post("/protocols", response_model=ProtocolResponse, status_code=status.HTTP_201_CREATED)
async def create_protocol(
    body: ProtocolCreate,
    caller: Caller = Depends(require_role(UserRole.ELDER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> ProtocolResponse:
    """Create a cultural protocol.  Only elders and admins may define protocols."""
    if body.community_id is not None and await db.get(Community, body.community_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Community {body.community_id} not found.",
        )

    protocol = CulturalProtocol(
        community_id=body.community_id,
        name=body.name,
        protocol_type=body.protocol_type,
        description=body.description,
        applicable_content=body.applicable_content,
        restrictions=body.restrictions,
        required_approvals=body.required_approvals,
        consequences=body.consequences,
        is_active=body.is_active,
        created_by=caller.user_id,
    )
    db.add(protocol)
    await db.flush()

    logger.info("Created protocol id=%d name=%r by user=%s", protocol.id, protocol.name, caller.user_id)
    return ProtocolResponse.model_validate(protocol)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@router.post("/analyze", response_model=CulturalAnalysisResponse)
async def analyze_content(
    body: CulturalAnalysisRequest,
    community_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
) -> CulturalAnalysisResponse:
    """
    Classify *content* and check it against the active protocols.

    Nothing is stored; use the upload or elder-review endpoints for that.
    """
    analysis = cultural_safety.analyze_cultural_safety(body.content, body.content_type)
    protocols = await cultural_safety.get_active_protocols(db, body.content_type, community_id)
    check = cultural_safety.check_protocol_compliance(body.content, protocols)

    return CulturalAnalysisResponse(
        level=analysis.level,
        confidence=analysis.confidence,
        flags=analysis.flags,
        recommendations=analysis.recommendations,
        review_required=analysis.review_required or not check.compliant,
        elder_approval_required=analysis.elder_approval_required,
        estimated_review_hours=cultural_safety.estimated_review_hours(analysis.level),
        priority=cultural_safety.review_priority(analysis.level),
        protocol_violations=check.violations,
        required_approvals=check.required_approvals,
    )


# ---------------------------------------------------------------------------
# Elder review
# ---------------------------------------------------------------------------

@router.get("/elder-reviews", response_model=List[ElderReviewResponse])
async def list_elder_reviews(
    review_status: Optional[ReviewStatus] = Query(None, alias="status"),
    caller: Caller = Depends(require_role(UserRole.ELDER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> List[ElderReviewResponse]:
    """
    Elder reviews, most urgent first.

    Elders see the reviews assigned to them; admins see every review.
    """
    query = select(ElderReview)
    if caller.role == UserRole.ELDER:
        query = query.where(ElderReview.elder_id == caller.user_id)
    if review_status is not None:
        query = query.where(ElderReview.status == review_status)

    result = await db.execute(query.order_by(ElderReview.created_at.desc(), ElderReview.id.desc()))
    reviews = result.scalars().all()

    urgency_rank = {"critical": 0, "high": 1, "medium": 2, "low": 3}
    reviews = sorted(reviews, key=lambda r: urgency_rank.get(r.urgency.value, 4))
    return [ElderReviewResponse.model_validate(r) for r in reviews]


@router.post(
    "/elder-reviews",
    response_model=ElderReviewSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_elder_review(
    body: ElderReviewSubmit,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ElderReviewSubmitResponse:
    """
    Ask one or more elders to review a piece of content.

    Ids that are not elders are returned in ``skipped_elder_ids``; if none
    of the ids is an elder the request fails with 400.
    """
    if body.content_type == "document":
        document = await db.get(Document, body.content_id)
        if document is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Document not found.",
            )
        # Uploaders may ask for review of content classified above their level
        if not caller.can_read(document.cultural_sensitivity) and document.uploaded_by != caller.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You may not request review of content you cannot access.",
            )

    review_ids, skipped = await cultural_safety.submit_for_elder_review(
        db,
        content_id=body.content_id,
        content_type=body.content_type,
        elder_ids=body.elder_ids,
        cultural_concerns=body.cultural_concerns,
        urgency=body.urgency,
        requested_by=caller.user_id,
    )
    if not review_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"None of the given ids belong to an elder: {', '.join(skipped)}",
        )

    return ElderReviewSubmitResponse(review_ids=review_ids, skipped_elder_ids=skipped)


@router.post("/elder-reviews/{review_id}/complete", response_model=ElderReviewResponse)
async def complete_elder_review(
    review_id: int,
    body: ElderReviewComplete,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ElderReviewResponse:
    """Record the assigned elder's decision.  Admins may complete any review."""
    review = await db.get(ElderReview, review_id)
    if review is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Elder review {review_id} not found.",
        )
    if caller.role != UserRole.ADMIN and review.elder_id != caller.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the assigned elder or an admin may complete this review.",
        )

    try:
        review = await cultural_safety.complete_elder_review(
            db,
            review,
            decision=body.decision,
            concerns=body.concerns,
            recommendations=body.recommendations,
            protocol_violations=body.protocol_violations,
            notes=body.notes,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        )

    return ElderReviewResponse.model_validate(review)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

@router.get("/stats", response_model=CulturalStatsResponse)
async def cultural_stats(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    community_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
) -> CulturalStatsResponse:
    """Counts of cultural reviews by level and status, plus elder review backlog."""
    stats = await cultural_safety.get_cultural_safety_stats(db, start, end, community_id)
    return CulturalStatsResponse(**stats)
