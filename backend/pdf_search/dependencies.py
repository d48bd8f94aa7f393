"""Pipeline construction and the FastAPI dependency that exposes it."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from pdf_search.config import Settings, settings
from pdf_search.models.schemas import ErrorDetail
from pdf_search.services.cache_service import CacheBackend, QueryCache, RecentSearches
from pdf_search.services.pdf_fetcher import PdfFetcher
from pdf_search.services.pipeline import SearchPipeline
from pdf_search.services.rag_service import Embedder, RetrievalEngine, create_durable_tier
from pdf_search.services.search_service import GoogleSearchClient

logger = logging.getLogger(__name__)


def build_pipeline(backend: CacheBackend, config: Settings = settings) -> SearchPipeline:
    """Wire the production collaborators into a pipeline."""
    return SearchPipeline(
        search_client=GoogleSearchClient(config, cache=backend),
        fetcher=PdfFetcher(config),
        engine=RetrievalEngine(create_durable_tier(config), Embedder(config), config),
        query_cache=QueryCache(backend, config),
        recent_searches=RecentSearches(backend, config),
        config=config,
    )


async def durable_tier_available(pipeline: SearchPipeline) -> bool:
    """Make sure the durable collection exists. Returns False on any error."""
    try:
        await pipeline.engine.ensure_collection(pipeline.engine.durable)
        return True
    except Exception as e:
        logger.warning("Durable tier unavailable, every query will be embedded fresh: %s", e)
        return False


def get_pipeline(request: Request) -> SearchPipeline:
    """Dependency for FastAPI routes to get the application's pipeline."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=503,
            detail=ErrorDetail(
                code="PIPELINE_UNAVAILABLE",
                message="Search pipeline is not configured",
            ).model_dump(),
        )
    return pipeline
