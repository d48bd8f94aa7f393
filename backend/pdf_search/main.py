"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pdf_search.dependencies import build_pipeline, durable_tier_available
from pdf_search.logging_config import configure_logging
from pdf_search.routers.search import router as search_router
from pdf_search.services.cache_service import build_cache_backend

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    backend = build_cache_backend()
    try:
        app.state.pipeline = build_pipeline(backend)
    except ValueError as e:
        logger.error("Search pipeline disabled: %s", e)
        app.state.pipeline = None
    else:
        await durable_tier_available(app.state.pipeline)
    yield
    if app.state.pipeline is not None:
        await app.state.pipeline.aclose()
    await backend.aclose()


app = FastAPI(
    title="PDF Search",
    description="Semantic passage search over PDFs found on the web",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)

app.include_router(search_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
