"""
Community endpoints.

POST /  — create a community (unique name).
GET  /  — list communities with document counts.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.database import get_db
from barkly.dependencies.auth import Caller, require_user
from barkly.models.database_models import Community, Document
from barkly.models.schemas import CommunityCreate, CommunityResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=CommunityResponse, status_code=status.HTTP_201_CREATED)
async def create_community(
    body: CommunityCreate,
    caller: Caller = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> CommunityResponse:
    """Create a new community."""
    existing = await db.execute(select(Community.id).where(Community.name == body.name))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Community {body.name!r} already exists.",
        )

    community = Community(
        name=body.name,
        description=body.description,
        region=body.region,
    )
    db.add(community)
    await db.flush()

    logger.info("Created community id=%d name=%r by user=%s", community.id, community.name, caller.user_id)

    return CommunityResponse(
        id=community.id,
        name=community.name,
        description=community.description,
        region=community.region,
        document_count=0,
        created_at=community.created_at,
    )


@router.get("", response_model=List[CommunityResponse])
async def list_communities(db: AsyncSession = Depends(get_db)) -> List[CommunityResponse]:
    """List all communities, alphabetically."""
    result = await db.execute(select(Community).order_by(Community.name))
    communities = result.scalars().all()

    # Batch-fetch document counts
    community_ids = [c.id for c in communities]
    doc_counts: Dict[int, int] = {}
    if community_ids:
        dc_result = await db.execute(
            select(Document.community_id, func.count(Document.id).label("cnt"))
            .where(Document.community_id.in_(community_ids))
            .group_by(Document.community_id)
        )
        doc_counts = {row.community_id: row.cnt for row in dc_result}

    return [
        CommunityResponse(
            id=c.id,
            name=c.name,
            description=c.description,
            region=c.region,
            document_count=doc_counts.get(c.id, 0),
            created_at=c.created_at,
        )
        for c in communities
    ]
