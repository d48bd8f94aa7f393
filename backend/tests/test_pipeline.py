"""End-to-end tests for SearchPipeline with fake search, fetch and embeddings."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from fakes import FakeEmbedder, FakeFetcher, FakeSearchClient, make_candidate, make_pages
from pytest_mock import MockerFixture

from pdf_search.config import Settings
from pdf_search.services.cache_service import InMemoryCache
from pdf_search.services.pdf_fetcher import DocumentFetchError
from pdf_search.services.pipeline import SearchPipeline
from pdf_search.services.rag_service import RetrievalEngine
from pdf_search.services.search_service import GoogleSearchClient, SearchProviderError

URL_1 = "https://cs.example.edu/search.pdf"
URL_2 = "https://cs.example.edu/broken.pdf"
URL_3 = "https://cs.example.edu/sorting.pdf"

SEARCH_PAGES = [
    "Binary search halves the sorted interval each step.",
    "Linear search scans every element in turn.",
    "Hash lookup trades memory for speed.",
]
SORTING_PAGES = [
    "Merge sort splits the array and merges halves.",
    "Binary search needs sorted input, which merge sort produces.",
]

MakePipeline = Callable[[FakeSearchClient, FakeFetcher], SearchPipeline]


def _documents() -> dict:
    return {
        URL_1: make_pages(URL_1, SEARCH_PAGES),
        URL_2: DocumentFetchError(code="PARSE_ERROR", message="corrupt xref"),
        URL_3: make_pages(URL_3, SORTING_PAGES),
    }


def _candidates() -> list:
    return [
        make_candidate(URL_1, "Searching"),
        make_candidate(URL_2, "Broken"),
        make_candidate(URL_3, "Sorting"),
    ]


class TestProcessQuery:
    async def test_empty_query(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(_candidates())
        pipeline = make_pipeline(search, FakeFetcher(_documents()))

        assert await pipeline.process_query("") == []
        assert await pipeline.process_query("   \n ") == []
        assert search.calls == []

    async def test_failed_document_skipped(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(FakeSearchClient(_candidates()), FakeFetcher(_documents()))
        results = await pipeline.process_query("binary search")

        assert [r.pdf_url for r in results] == [URL_1, URL_3]
        assert results[0].title == "Searching"
        assert results[0].snippet == "Snippet for Searching"

    async def test_pages_listed_in_page_order(self, make_pipeline: MakePipeline) -> None:
        url = "https://cs.example.edu/long.pdf"
        pages = make_pages(url, [f"binary search detail number {i}" for i in range(8)])
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(url)]), FakeFetcher({url: pages})
        )
        results = await pipeline.process_query("binary search")

        page_numbers = [p.page_number for p in results[0].relevant_pages]
        assert len(page_numbers) == 5
        assert page_numbers == sorted(page_numbers)
        assert all(p.total_pages == 8 for p in results[0].relevant_pages)

    async def test_search_limited_by_settings(
        self, make_pipeline: MakePipeline, test_settings: Settings
    ) -> None:
        search = FakeSearchClient(_candidates())
        await make_pipeline(search, FakeFetcher(_documents())).process_query("binary search")
        assert search.calls == [("binary search", test_settings.search_result_limit)]

    async def test_query_stripped(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(_candidates())
        pipeline = make_pipeline(search, FakeFetcher(_documents()))
        await pipeline.process_query("  binary search  ")
        assert search.calls[0][0] == "binary search"
        assert await pipeline.get_recent_searches() == ["binary search"]

    async def test_search_error_returns_empty(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(
            [], error=SearchProviderError(code="SEARCH_UNAVAILABLE", message="timeout")
        )
        assert await make_pipeline(search, FakeFetcher({})).process_query("q") == []

    async def test_search_cache_outage_still_answers(
        self, make_pipeline: MakePipeline, test_settings: Settings, mocker: MockerFixture
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-type": "application/pdf"})
            return httpx.Response(200, json={"items": [{"link": URL_1, "title": "Searching"}]})

        search_cache = InMemoryCache()
        mocker.patch.object(search_cache, "get", side_effect=ConnectionError("redis down"))
        mocker.patch.object(search_cache, "set", side_effect=ConnectionError("redis down"))
        search = GoogleSearchClient(
            test_settings,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            cache=search_cache,
        )
        results = await make_pipeline(search, FakeFetcher(_documents())).process_query(
            "binary search"
        )
        assert [r.pdf_url for r in results] == [URL_1]

    async def test_no_valid_pdfs(self, make_pipeline: MakePipeline) -> None:
        fetcher = FakeFetcher(_documents())
        search = FakeSearchClient(_candidates(), invalid={URL_1, URL_2, URL_3})
        assert await make_pipeline(search, fetcher).process_query("binary search") == []
        assert fetcher.calls == []

    async def test_blank_document_omitted(self, make_pipeline: MakePipeline) -> None:
        url = "https://cs.example.edu/scanned.pdf"
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(url)]),
            FakeFetcher({url: make_pages(url, ["", "  "])}),
        )
        assert await pipeline.process_query("binary search") == []

    async def test_unexpected_error_returns_empty(
        self, make_pipeline: MakePipeline, mocker: MockerFixture
    ) -> None:
        pipeline = make_pipeline(FakeSearchClient(_candidates()), FakeFetcher(_documents()))
        mocker.patch.object(pipeline.query_cache, "get", side_effect=RuntimeError("boom"))
        assert await pipeline.process_query("binary search") == []


class TestQueryCache:
    async def test_second_query_served_from_cache(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(_candidates())
        fetcher = FakeFetcher(_documents())
        pipeline = make_pipeline(search, fetcher)

        first = await pipeline.process_query("binary search")
        await pipeline.background.join()
        fetches = len(fetcher.calls)
        second = await pipeline.process_query("binary search")

        assert second == first
        assert len(search.calls) == 1
        assert len(fetcher.calls) == fetches

    async def test_paraphrase_hits_cache(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(_candidates())
        pipeline = make_pipeline(search, FakeFetcher(_documents()))

        first = await pipeline.process_query("What does binary search do?")
        await pipeline.background.join()
        second = await pipeline.process_query("what is binary search")

        assert second == first
        assert len(search.calls) == 1

    async def test_back_to_back_queries_without_join(
        self, make_pipeline: MakePipeline
    ) -> None:
        search = FakeSearchClient(_candidates())
        pipeline = make_pipeline(search, FakeFetcher(_documents()))

        first = await pipeline.process_query("binary search")
        second = await pipeline.process_query("binary search")

        assert second == first
        assert len(search.calls) == 1

    async def test_different_query_misses(self, make_pipeline: MakePipeline) -> None:
        search = FakeSearchClient(_candidates())
        pipeline = make_pipeline(search, FakeFetcher(_documents()))

        await pipeline.process_query("binary search")
        await pipeline.background.join()
        await pipeline.process_query("merge sort")
        assert len(search.calls) == 2


class TestDurableTier:
    async def test_first_query_populates_durable_tier(
        self, make_pipeline: MakePipeline, engine: RetrievalEngine
    ) -> None:
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(URL_1)]), FakeFetcher(_documents())
        )
        await pipeline.process_query("binary search")
        await pipeline.background.join()

        stored = await engine.retrieve(engine.durable, URL_1, "")
        assert len(stored) == len(SEARCH_PAGES)

    async def test_chunks_embedded_once(
        self, make_pipeline: MakePipeline, engine: RetrievalEngine, embedder: FakeEmbedder
    ) -> None:
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(URL_1)]), FakeFetcher(_documents())
        )
        await pipeline.process_query("binary search")
        await pipeline.background.join()

        assert embedder.document_calls == len(SEARCH_PAGES)
        assert len(await engine.retrieve(engine.durable, URL_1, "")) == len(SEARCH_PAGES)

    async def test_durable_hit_skips_fetch(
        self, make_pipeline: MakePipeline, embedder: FakeEmbedder
    ) -> None:
        fetcher = FakeFetcher(_documents())
        pipeline = make_pipeline(FakeSearchClient([make_candidate(URL_1)]), fetcher)
        assert await pipeline.index_document(URL_1)
        embedded = embedder.document_calls

        results = await pipeline.process_query("binary search")

        assert fetcher.calls == [URL_1]  # only the indexing fetch
        assert embedder.document_calls == embedded
        assert results[0].pdf_url == URL_1
        assert results[0].relevant_pages

    async def test_durable_write_failure_still_answers(
        self, make_pipeline: MakePipeline, engine: RetrievalEngine, mocker: MockerFixture
    ) -> None:
        mocker.patch.object(
            engine.durable.client, "upsert", side_effect=ConnectionError("qdrant down")
        )
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(URL_1)]), FakeFetcher(_documents())
        )
        results = await pipeline.process_query("binary search")
        await pipeline.background.join()

        assert [r.pdf_url for r in results] == [URL_1]
        assert pipeline.background.pending == 0

    async def test_index_document_fetch_error_propagates(
        self, make_pipeline: MakePipeline
    ) -> None:
        pipeline = make_pipeline(FakeSearchClient([]), FakeFetcher({}))
        with pytest.raises(DocumentFetchError) as exc_info:
            await pipeline.index_document("https://example.org/missing.pdf")
        assert exc_info.value.code == "HTTP_STATUS"


class TestLargeDocuments:
    async def test_all_page_groups_contribute(
        self, make_pipeline: MakePipeline, test_settings: Settings
    ) -> None:
        url = "https://cs.example.edu/textbook.pdf"
        pages = make_pages(url, [f"chapter page {i} on graph traversal" for i in range(120)])
        pipeline = make_pipeline(
            FakeSearchClient([make_candidate(url)]), FakeFetcher({url: pages})
        )
        results = await pipeline.process_query("graph traversal")

        page_numbers = [p.page_number for p in results[0].relevant_pages]
        assert len(page_numbers) == 3 * test_settings.ephemeral_top_k
        assert any(n <= 50 for n in page_numbers)
        assert any(50 < n <= 100 for n in page_numbers)
        assert any(n > 100 for n in page_numbers)
        assert page_numbers == sorted(page_numbers)


class TestRecentSearches:
    async def test_recorded_most_recent_first(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(FakeSearchClient([]), FakeFetcher({}))
        for q in ("heaps", "tries", "heaps"):
            await pipeline.process_query(q)
        assert await pipeline.get_recent_searches() == ["heaps", "tries"]

    async def test_cache_hits_recorded(self, make_pipeline: MakePipeline) -> None:
        pipeline = make_pipeline(FakeSearchClient(_candidates()), FakeFetcher(_documents()))
        await pipeline.process_query("binary search")
        await pipeline.background.join()
        await pipeline.process_query("merge sort")
        await pipeline.process_query("binary search")
        assert await pipeline.get_recent_searches() == ["binary search", "merge sort"]
