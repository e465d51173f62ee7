"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime, timezone
import logging

from barkly.database import get_db
from barkly.models.schemas import HealthCheckResponse
from barkly.services.llm_client import llm_client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of database and LLM provider
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check LLM connection
    llm_status = "ok"
    try:
        if not await llm_client.is_available():
            llm_status = "error"
    except Exception as e:
        logger.error("LLM health check failed: %s", e)
        llm_status = "error"

    # Overall status: a missing LLM only degrades the service
    if db_status != "ok":
        overall_status = "unhealthy"
    elif llm_status != "ok":
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        llm=llm_status,
        timestamp=datetime.now(timezone.utc),
    )
