"""Query pipeline: search, validate, fetch, rank and cache PDF passages."""

from __future__ import annotations

import asyncio
import logging
import time

from pdf_search.config import Settings, settings
from pdf_search.models.documents import CandidateDocument
from pdf_search.models.schemas import DocumentResult
from pdf_search.services.background import TaskSupervisor
from pdf_search.services.cache_service import QueryCache, RecentSearches
from pdf_search.services.pdf_fetcher import PdfFetcher
from pdf_search.services.rag_service import RetrievalEngine, RetrievalRun
from pdf_search.services.search_service import GoogleSearchClient, SearchProviderError
from pdf_search.services.semantic_key import Analyzer, derive_key

logger = logging.getLogger(__name__)


class SearchPipeline:
    """Turns a natural-language query into ranked passages from web PDFs.

    ``process_query`` never raises: search, fetch, embedding and cache
    failures all degrade to fewer (or no) results. Cache writes, durable-tier
    upserts and ephemeral cleanup run as supervised background tasks so the
    caller never waits on them.
    """

    def __init__(
        self,
        *,
        search_client: GoogleSearchClient,
        fetcher: PdfFetcher,
        engine: RetrievalEngine,
        query_cache: QueryCache,
        recent_searches: RecentSearches,
        background: TaskSupervisor | None = None,
        analyzer: Analyzer | None = None,
        config: Settings = settings,
    ) -> None:
        self.search_client = search_client
        self.fetcher = fetcher
        self.engine = engine
        self.query_cache = query_cache
        self.recent_searches = recent_searches
        self.background = background or TaskSupervisor()
        self._analyzer = analyzer
        self._settings = config

    async def process_query(self, query: str) -> list[DocumentResult]:
        if not query.strip():
            return []

        start = time.perf_counter()
        try:
            results = await self._run(query.strip())
        except Exception:
            logger.exception("Query pipeline failed for %r", query)
            return []
        logger.info(
            "Query %r answered with %d documents in %.0fms",
            query,
            len(results),
            (time.perf_counter() - start) * 1000,
        )
        return results

    async def _run(self, query: str) -> list[DocumentResult]:
        await self.recent_searches.add(query)

        semantic_key = derive_key(query, analyzer=self._analyzer)
        cached = await self.query_cache.get(semantic_key)
        if cached is not None:
            logger.info("Cache hit %s", semantic_key)
            return cached

        candidates = await self._search_and_validate(query)
        if not candidates:
            logger.info("No valid PDFs found for %r", query)
            return []

        logger.info("Processing %d PDFs", len(candidates))
        run = self.engine.open_run()
        try:
            outcomes = await asyncio.gather(
                *(self._process_document(c, query, run) for c in candidates),
                return_exceptions=True,
            )
        finally:
            self.background.spawn(run.aclose(), name="ephemeral-cleanup")

        results: list[DocumentResult] = []
        for candidate, outcome in zip(candidates, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error("Skipping %s: %s", candidate.url, outcome)
            elif outcome is not None:
                results.append(outcome)

        logger.info("Caching query %s", semantic_key)
        self.background.spawn(
            self.query_cache.stage(semantic_key, results),
            name=f"cache-query:{semantic_key}",
        )
        return results

    async def _search_and_validate(self, query: str) -> list[CandidateDocument]:
        try:
            found = await self.search_client.search_pdfs(
                query, limit=self._settings.search_result_limit
            )
        except SearchProviderError as e:
            logger.error("Search failed [%s]: %s", e.code, e.message)
            return []
        valid = await self.search_client.validate_pdf_results(found)
        logger.info("Found %d results, %d valid PDFs", len(found), len(valid))
        return valid

    async def _process_document(
        self, candidate: CandidateDocument, query: str, run: RetrievalRun
    ) -> DocumentResult | None:
        url = candidate.url

        # Any durable hit stands in for the whole document.
        passages = await self.engine.retrieve(
            self.engine.durable, url, query, top_k=self._settings.durable_top_k
        )
        if passages:
            logger.info("Reusing durable embeddings for %s", url)
        else:
            pages = await self.fetcher.fetch_pages(url)
            passages = await run.find_relevant_passages(url, pages, query)
            # Reuses the ephemeral vectors; None re-embeds in the background.
            self.background.spawn(
                self.engine.store(
                    self.engine.durable, url, pages, points=run.embedded_points(url)
                ),
                name=f"durable-store:{url}",
            )

        if not passages:
            logger.info("No relevant passages in %s", url)
            return None
        return DocumentResult.from_passages(candidate, passages)

    async def index_document(self, url: str) -> bool:
        """Fetch a PDF and store its embeddings in the durable tier."""
        pages = await self.fetcher.fetch_pages(url)
        return await self.engine.store(self.engine.durable, url, pages)

    async def get_recent_searches(self, limit: int = 5) -> list[str]:
        return await self.recent_searches.get(limit)

    async def aclose(self) -> None:
        """Wait for background work, then release clients."""
        await self.background.join()
        await self.search_client.aclose()
        await self.fetcher.aclose()
        await self.engine.aclose()
