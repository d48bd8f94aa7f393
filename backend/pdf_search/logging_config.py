"""Rich console logging shared by the API and the CLI scripts."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from pdf_search.config import settings


def configure_logging(debug: bool | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s - %(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(rich_tracebacks=True, markup=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # Our app loggers: show DEBUG when debug=True, keep third-party libs at INFO
    if settings.debug if debug is None else debug:
        logging.getLogger("pdf_search").setLevel(logging.DEBUG)
