"""Shared fixtures: in-memory Qdrant, fake embedder, and a pipeline factory."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest
from fakes import (
    EMBEDDING_DIMS,
    FakeEmbedder,
    FakeFetcher,
    FakeSearchClient,
    make_candidate,
    make_pages,
    word_analyzer,
)
from httpx import ASGITransport, AsyncClient
from qdrant_client import AsyncQdrantClient

from pdf_search.config import Settings
from pdf_search.dependencies import get_pipeline
from pdf_search.main import app
from pdf_search.services.background import TaskSupervisor
from pdf_search.services.cache_service import InMemoryCache, QueryCache, RecentSearches
from pdf_search.services.pipeline import SearchPipeline
from pdf_search.services.rag_service import RetrievalEngine, VectorTier


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        google_search_api_key="test-key",
        google_search_engine_id="test-cx",
        qdrant_url=":memory:",
        embedding_dimensions=EMBEDDING_DIMS,
        redis_url="",
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
async def durable_tier(test_settings: Settings) -> AsyncIterator[VectorTier]:
    client = AsyncQdrantClient(location=":memory:")
    yield VectorTier(client, test_settings.qdrant_collection, name="durable")
    await client.close()


@pytest.fixture
def engine(
    durable_tier: VectorTier, embedder: FakeEmbedder, test_settings: Settings
) -> RetrievalEngine:
    return RetrievalEngine(durable_tier, embedder, test_settings)


@pytest.fixture
def cache_backend() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
async def make_pipeline(
    engine: RetrievalEngine,
    cache_backend: InMemoryCache,
    test_settings: Settings,
) -> AsyncIterator[Callable[..., SearchPipeline]]:
    created: list[SearchPipeline] = []

    def _make(search_client: FakeSearchClient, fetcher: FakeFetcher) -> SearchPipeline:
        pipeline = SearchPipeline(
            search_client=search_client,
            fetcher=fetcher,
            engine=engine,
            query_cache=QueryCache(cache_backend, test_settings),
            recent_searches=RecentSearches(cache_backend, test_settings),
            background=TaskSupervisor(),
            analyzer=word_analyzer,
            config=test_settings,
        )
        created.append(pipeline)
        return pipeline

    yield _make
    for pipeline in created:
        await pipeline.background.join()


@pytest.fixture
def search_pipeline(make_pipeline: Callable[..., SearchPipeline]) -> SearchPipeline:
    url = "https://cs.example.edu/search.pdf"
    return make_pipeline(
        FakeSearchClient([make_candidate(url, "Searching")]),
        FakeFetcher(
            {url: make_pages(url, ["Binary search halves the interval.", "Heaps"])}
        ),
    )


@pytest.fixture
async def client(search_pipeline: SearchPipeline) -> AsyncIterator[AsyncClient]:
    app.dependency_overrides[get_pipeline] = lambda: search_pipeline
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
