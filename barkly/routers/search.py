"""
Chunk search endpoints.

GET /api/search/text     — case-insensitive substring match over chunk text.
GET /api/search/similar  — embed a query text and return the top-K most
                           similar chunks via pgvector.

Both only return chunks of documents the caller may read.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.database import get_db
from barkly.dependencies.auth import Caller, get_caller
from barkly.models.database_models import Chunk, Document
from barkly.models.schemas import SearchResult
from barkly.services.embedding import embedding_service
from barkly.utils.helpers import LIKE_ESCAPE, contains_pattern

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/text", response_model=List[SearchResult])
async def search_text(
    q: str = Query(..., min_length=1, description="Text to look for"),
    document_id: Optional[int] = None,
    limit: int = Query(20, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> List[SearchResult]:
    """Chunks whose text contains *q*, in document then reading order."""
    query = (
        select(Chunk, Document.filename)
        .join(Document, Document.id == Chunk.document_id)
        .where(
            Document.cultural_sensitivity.in_(caller.levels),
            Chunk.content.ilike(contains_pattern(q), escape=LIKE_ESCAPE),
        )
    )
    if document_id is not None:
        query = query.where(Chunk.document_id == document_id)

    result = await db.execute(
        query.order_by(Chunk.document_id, Chunk.chunk_index).limit(limit)
    )
    results = [
        SearchResult(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            filename=filename,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
        )
        for chunk, filename in result.all()
    ]

    logger.info("search_text: q=%r → %d results", q[:80], len(results))
    return results


@router.get("/similar", response_model=List[SearchResult])
async def find_similar_chunks(
    query: str = Query(..., min_length=1, description="Natural-language query text"),
    top_k: int = Query(10, ge=1, le=100, description="Maximum number of results"),
    threshold: float = Query(
        0.7,
        ge=0.0,
        le=1.0,
        description="Minimum cosine similarity score (0–1)",
    ),
    document_id: Optional[int] = Query(
        None,
        description="Restrict search to a single document (optional)",
    ),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
) -> List[SearchResult]:
    """
    Embed *query*, then return the *top_k* most semantically similar chunks,
    ranked by cosine similarity (highest first).
    """
    query_embedding = await embedding_service.embed_text(query)
    if query_embedding is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=(
                "Could not generate an embedding for the query. "
                "Check that Ollama is running and the embedding model is loaded."
            ),
        )

    raw_results = await embedding_service.find_similar_chunks(
        query_embedding=query_embedding,
        db=db,
        levels=caller.levels,
        top_k=top_k,
        threshold=threshold,
        document_id=document_id,
    )

    results = [SearchResult(**r) for r in raw_results]

    logger.info(
        "find_similar_chunks: query=%r → %d results (threshold=%.2f, top_k=%d)",
        query[:80],
        len(results),
        threshold,
        top_k,
    )
    return results
