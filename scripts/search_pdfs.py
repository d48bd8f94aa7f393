"""Interactive CLI: run one query through the pipeline and print the passages.

Usage:
    python scripts/search_pdfs.py
    python scripts/search_pdfs.py --query "what is binary search?"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import time

from pdf_search.config import settings
from pdf_search.dependencies import build_pipeline, durable_tier_available
from pdf_search.logging_config import configure_logging
from pdf_search.services.cache_service import build_cache_backend


async def run(query: str) -> None:
    backend = build_cache_backend(settings)
    pipeline = build_pipeline(backend, settings)
    try:
        await durable_tier_available(pipeline)
        start = time.perf_counter()
        results = await pipeline.process_query(query)
        elapsed = (time.perf_counter() - start) * 1000
        print(json.dumps([r.model_dump() for r in results], indent=2))
        print(f"Time taken: {elapsed:.0f}ms")
    finally:
        await pipeline.aclose()
        await backend.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Search the web for PDF passages")
    parser.add_argument("--query", type=str, default=None, help="Query to run")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    configure_logging(debug=args.debug or None)
    query = args.query if args.query is not None else input("Enter your query: ")
    asyncio.run(run(query))


if __name__ == "__main__":
    main()
