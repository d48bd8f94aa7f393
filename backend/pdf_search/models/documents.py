"""Pydantic models for the retrieval pipeline: pages, chunks and scored passages."""

from __future__ import annotations

from pydantic import BaseModel


class CandidateDocument(BaseModel):
    """A PDF discovered by the web search step."""

    url: str
    title: str = ""
    snippet: str = ""
    thumbnail: str = ""


class PageUnit(BaseModel):
    """Extracted text of a single PDF page."""

    page_number: int
    text: str
    total_pages: int
    source_url: str


class Chunk(BaseModel):
    """A fixed-size slice of a page with enough metadata to locate it again."""

    text: str
    source_url: str
    page_number: int
    lines_from: int
    lines_to: int
    total_pages: int


class ScoredPassage(BaseModel):
    """A chunk returned by a similarity search, higher score is more relevant."""

    chunk: Chunk
    score: float
