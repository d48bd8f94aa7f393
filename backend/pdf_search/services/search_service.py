"""Web search for candidate PDFs via Google Programmable Search."""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import TypeAdapter, ValidationError

from pdf_search.config import Settings, settings
from pdf_search.models.documents import CandidateDocument
from pdf_search.services.cache_service import CacheBackend

logger = logging.getLogger(__name__)

GOOGLE_SEARCH_API_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
PDF_CONTENT_TYPE = "application/pdf"

_candidates_adapter = TypeAdapter(list[CandidateDocument])


class SearchProviderError(Exception):
    """Raised when the search provider cannot return results."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


def _to_candidate(item: dict) -> CandidateDocument:
    thumbnails = item.get("pagemap", {}).get("cse_thumbnail") or [{}]
    return CandidateDocument(
        url=item["link"],
        title=item.get("title", ""),
        snippet=item.get("snippet", ""),
        thumbnail=thumbnails[0].get("src", ""),
    )


class GoogleSearchClient:
    """Custom Search JSON API client with response caching and PDF validation."""

    def __init__(
        self,
        config: Settings = settings,
        http_client: httpx.AsyncClient | None = None,
        cache: CacheBackend | None = None,
    ) -> None:
        if not config.google_search_api_key:
            raise ValueError("GOOGLE_SEARCH_API_KEY is required")
        if not config.google_search_engine_id:
            raise ValueError("GOOGLE_SEARCH_ENGINE_ID is required")
        self._settings = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=30)
        self._cache = cache

    async def search(self, query: str, limit: int = 10) -> list[CandidateDocument]:
        cache_key = f"google:{query}:{limit}"
        cached = await self._read_cache(cache_key)
        if cached is not None:
            logger.info("Search cache hit %s", cache_key)
            return cached

        logger.info("Searching for %r (limit=%d)", query, limit)
        try:
            resp = await self._http.get(
                GOOGLE_SEARCH_API_ENDPOINT,
                params={
                    "key": self._settings.google_search_api_key,
                    "cx": self._settings.google_search_engine_id,
                    "q": query,
                    "num": limit,
                    "fileType": "pdf",
                },
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Google Search API error: %s", e.response.text)
            raise SearchProviderError(
                code="SEARCH_API_ERROR",
                message=f"Google Search failed with status {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise SearchProviderError(
                code="SEARCH_UNAVAILABLE",
                message=f"Google Search failed: {e}",
            ) from e

        candidates = [
            _to_candidate(item) for item in resp.json().get("items", []) if "link" in item
        ]
        await self._write_cache(cache_key, candidates)
        return candidates

    async def _read_cache(self, cache_key: str) -> list[CandidateDocument] | None:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(cache_key)
        except Exception:
            logger.exception("Search cache read failed for %s", cache_key)
            return None
        if raw is None:
            return None
        try:
            return _candidates_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding undecodable search cache entry %s: %s", cache_key, e)
            return None

    async def _write_cache(
        self, cache_key: str, candidates: list[CandidateDocument]
    ) -> None:
        if self._cache is None:
            return
        payload = _candidates_adapter.dump_json(candidates).decode("utf-8")
        try:
            await self._cache.set(cache_key, payload, ttl=self._settings.search_cache_ttl)
        except Exception:
            logger.exception("Search cache write failed for %s", cache_key)

    async def search_pdfs(self, query: str, limit: int = 10) -> list[CandidateDocument]:
        """Search restricted to PDF documents."""
        if "filetype:pdf" not in query:
            query = f"{query} filetype:pdf"
        return await self.search(query, limit)

    async def _is_pdf(self, candidate: CandidateDocument) -> bool:
        # InvalidURL is not an HTTPError subclass.
        try:
            resp = await self._http.head(
                candidate.url,
                timeout=self._settings.validation_timeout,
                follow_redirects=True,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Invalid PDF URL %s: %s", candidate.url, e)
            return False
        content_type = resp.headers.get("content-type", "")
        return resp.status_code == 200 and PDF_CONTENT_TYPE in content_type

    async def validate_pdf_results(
        self, candidates: list[CandidateDocument]
    ) -> list[CandidateDocument]:
        """Keep candidates that answer a HEAD request with a PDF content type."""
        checks = await asyncio.gather(*(self._is_pdf(c) for c in candidates))
        valid = []
        for candidate, ok in zip(candidates, checks, strict=True):
            if ok:
                valid.append(candidate)
            else:
                logger.warning("Skipping invalid PDF URL: %s", candidate.url)
        return valid

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
