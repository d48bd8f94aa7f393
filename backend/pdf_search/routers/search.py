"""PDF search API endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from pdf_search.dependencies import get_pipeline
from pdf_search.models.schemas import DocumentResult, SearchRequest
from pdf_search.services.pipeline import SearchPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/search", tags=["search"])


@router.post("", response_model=list[DocumentResult])
async def search_pdfs(
    body: SearchRequest,
    pipeline: SearchPipeline = Depends(get_pipeline),
) -> list[DocumentResult]:
    logger.info("Search request: %r", body.query)
    return await pipeline.process_query(body.query)


@router.get("/recent", response_model=list[str])
async def recent_searches(
    limit: int = Query(default=5, ge=1, le=10),
    pipeline: SearchPipeline = Depends(get_pipeline),
) -> list[str]:
    return await pipeline.get_recent_searches(limit)
