"""CLI script to embed PDFs into the durable Qdrant tier ahead of queries.

Usage:
    python scripts/ingest_pdfs.py --url https://example.org/paper.pdf
    python scripts/ingest_pdfs.py --file urls.txt
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from pdf_search.config import settings
from pdf_search.logging_config import configure_logging
from pdf_search.services.pdf_fetcher import DocumentFetchError, PdfFetcher
from pdf_search.services.rag_service import Embedder, RetrievalEngine, create_durable_tier


async def ingest(urls: list[str]) -> int:
    """Store every URL in the durable tier. Returns the number stored."""
    fetcher = PdfFetcher(settings)
    engine = RetrievalEngine(create_durable_tier(settings), Embedder(settings), settings)
    stored = 0
    try:
        print("Ensuring Qdrant collection exists...")
        await engine.ensure_collection(engine.durable)
        for url in urls:
            print(f"\nIngesting {url}...")
            try:
                pages = await fetcher.fetch_pages(url)
            except DocumentFetchError as e:
                print(f"  Skipped [{e.code}]: {e.message}")
                continue
            print(f"  Fetched {len(pages)} pages")
            if await engine.store(engine.durable, url, pages):
                stored += 1
            else:
                print("  Failed to store embeddings (see log)")
    finally:
        await fetcher.aclose()
        await engine.aclose()
    return stored


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest PDFs into the durable vector tier")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--url", action="append", help="PDF URL to ingest (repeatable)")
    group.add_argument("--file", type=Path, help="Text file with one PDF URL per line")
    args = parser.parse_args()

    configure_logging()

    if args.file:
        if not args.file.exists():
            print(f"Error: File not found: {args.file}")
            sys.exit(1)
        urls = [
            line.strip()
            for line in args.file.read_text(encoding="utf-8").splitlines()
            if line.strip() and not line.startswith("#")
        ]
    else:
        urls = args.url
    if not urls:
        print("No URLs to ingest")
        sys.exit(1)

    stored = asyncio.run(ingest(urls))
    print(f"\nDone! Stored {stored}/{len(urls)} PDFs.")


if __name__ == "__main__":
    main()
