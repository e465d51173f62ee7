"""
Entity search and analytics.

GET /search     — entities by name, type or document.
GET /analytics  — counts by type and the most mentioned entities.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.database import get_db
from barkly.dependencies.auth import Caller, get_caller
from barkly.models.database_models import Document, Entity, EntityType
from barkly.models.schemas import EntityAnalyticsResponse, EntityResponse
from barkly.utils.helpers import LIKE_ESCAPE, contains_pattern

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/search", response_model=List[EntityResponse])
async def search_entities(
    q: Optional[str] = Query(None, description="Case-insensitive name fragment"),
    entity_type: Optional[EntityType] = Query(None, alias="type"),
    document_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> List[EntityResponse]:
    """
    Search entities extracted from documents the caller may read.

    Results are ordered by importance, then mentions.
    """
    query = (
        select(Entity)
        .join(Document, Document.id == Entity.document_id)
        .where(Document.cultural_sensitivity.in_(caller.levels))
    )
    if q:
        pattern = contains_pattern(q.strip())
        query = query.where(
            or_(
                Entity.name.ilike(pattern, escape=LIKE_ESCAPE),
                Entity.canonical_name.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    if entity_type is not None:
        query = query.where(Entity.entity_type == entity_type)
    if document_id is not None:
        query = query.where(Entity.document_id == document_id)

    result = await db.execute(
        query.order_by(Entity.importance.desc(), Entity.mentions.desc(), Entity.id).limit(limit)
    )
    return [EntityResponse.model_validate(e) for e in result.scalars().all()]


@router.get("/analytics", response_model=EntityAnalyticsResponse)
async def entity_analytics(
    top: int = Query(10, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> EntityAnalyticsResponse:
    """Entity counts by type and the *top* entities by total mentions across documents."""
    visible = Document.cultural_sensitivity.in_(caller.levels)

    type_rows = await db.execute(
        select(Entity.entity_type, func.count(Entity.id))
        .join(Document, Document.id == Entity.document_id)
        .where(visible)
        .group_by(Entity.entity_type)
    )
    by_type = {entity_type.value: count for entity_type, count in type_rows.all()}

    mentions = func.sum(Entity.mentions).label("mentions")
    top_rows = await db.execute(
        select(
            Entity.canonical_name,
            Entity.entity_type,
            mentions,
            func.count(func.distinct(Entity.document_id)).label("documents"),
        )
        .join(Document, Document.id == Entity.document_id)
        .where(visible)
        .group_by(Entity.canonical_name, Entity.entity_type)
        .order_by(mentions.desc(), Entity.canonical_name)
        .limit(top)
    )
    top_entities = [
        {
            "name": row.canonical_name,
            "type": row.entity_type.value,
            "mentions": int(row.mentions or 0),
            "documents": row.documents,
        }
        for row in top_rows.all()
    ]

    return EntityAnalyticsResponse(
        total_entities=sum(by_type.values()),
        by_type=by_type,
        top_entities=top_entities,
    )
