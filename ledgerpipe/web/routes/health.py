"""Health check API routes.

Reports database connectivity and how many pipelines this process is running.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import text

from ledgerpipe.context import PipelineContext
from ledgerpipe.db.connection import get_session
from ledgerpipe.web.dependencies import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(pipeline: PipelineContext = Depends(get_pipeline)):
    try:
        async with get_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check could not reach the database: {e}")
        return {
            "status": "error",
            "database": "disconnected",
            "detail": str(e),
        }
    return {
        "status": "ok",
        "database": "connected",
        "active_pipelines": len(pipeline.tasks.active_sessions),
    }
