"""Page-aware text chunker for extracted PDF pages."""

from __future__ import annotations

from functools import lru_cache

from langchain_text_splitters import RecursiveCharacterTextSplitter

from pdf_search.models.documents import Chunk, PageUnit


@lru_cache(maxsize=8)
def _splitter(chunk_size: int, chunk_overlap: int) -> RecursiveCharacterTextSplitter:
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=["\n\n", "\n", " ", ""],
        add_start_index=True,
    )


def split_text(
    text: str,
    *,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[tuple[int, int]]:
    """Split text into overlapping ``(start, end)`` windows.

    Windows are at most ``chunk_size`` characters, cut on paragraph, line
    or word breaks where possible. Leading and trailing whitespace is
    trimmed from each window, so whatever lies between two windows is
    whitespace only, and the last window reaches the last non-blank
    character of the text.
    """
    if chunk_size <= chunk_overlap:
        raise ValueError(
            f"chunk_size ({chunk_size}) must be larger than chunk_overlap ({chunk_overlap})"
        )

    spans: list[tuple[int, int]] = []
    for doc in _splitter(chunk_size, chunk_overlap).create_documents([text]):
        start = doc.metadata["start_index"]
        spans.append((start, start + len(doc.page_content)))
    return spans


def split_pages(
    pages: list[PageUnit],
    *,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[Chunk]:
    """Convert pages into Chunks carrying page and line provenance.

    Chunks never span pages. Blank pages produce no chunks; line numbers
    are 1-based within the page.
    """
    chunks: list[Chunk] = []
    for page in pages:
        text = page.text
        for start, end in split_text(
            text, chunk_size=chunk_size, chunk_overlap=chunk_overlap
        ):
            chunks.append(
                Chunk(
                    text=text[start:end],
                    source_url=page.source_url,
                    page_number=page.page_number,
                    lines_from=text.count("\n", 0, start) + 1,
                    lines_to=text.count("\n", 0, end) + 1,
                    total_pages=page.total_pages,
                )
            )
    return chunks
