"""PDF download and per-page text extraction."""

from __future__ import annotations

import asyncio
import io
import logging

import httpx
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from pdf_search.config import Settings, settings
from pdf_search.models.documents import PageUnit

logger = logging.getLogger(__name__)


class DocumentFetchError(Exception):
    """Raised when a PDF cannot be downloaded or parsed."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


def extract_pages(data: bytes, source_url: str) -> list[PageUnit]:
    """Extract text from every page of a PDF, one PageUnit per page."""
    reader = PdfReader(io.BytesIO(data))
    total = len(reader.pages)
    return [
        PageUnit(
            page_number=idx + 1,
            text=page.extract_text() or "",
            total_pages=total,
            source_url=source_url,
        )
        for idx, page in enumerate(reader.pages)
    ]


class PdfFetcher:
    """Downloads PDFs and turns them into ordered page text."""

    def __init__(
        self,
        config: Settings = settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=config.fetch_timeout, follow_redirects=True
        )

    async def fetch_pages(self, url: str) -> list[PageUnit]:
        logger.info("Fetching PDF %s", url)
        try:
            resp = await self._http.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DocumentFetchError(
                code="HTTP_STATUS",
                message=f"Fetching {url} returned {e.response.status_code}",
            ) from e
        except httpx.HTTPError as e:
            raise DocumentFetchError(
                code="HTTP_ERROR",
                message=f"Failed to fetch {url}: {e}",
            ) from e

        try:
            # pypdf is CPU-bound; keep it off the event loop.
            pages = await asyncio.to_thread(extract_pages, resp.content, url)
        except (PyPdfError, KeyError, ValueError) as e:
            raise DocumentFetchError(
                code="PARSE_ERROR",
                message=f"Failed to parse PDF {url}: {e}",
            ) from e

        if not pages:
            raise DocumentFetchError(
                code="EMPTY_DOCUMENT",
                message=f"PDF {url} has no pages",
            )
        logger.info(
            "Extracted %d pages (%d chars) from %s",
            len(pages),
            sum(len(p.text) for p in pages),
            url,
        )
        return pages

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
