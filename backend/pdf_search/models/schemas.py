"""Pydantic request/response/error schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from pdf_search.models.documents import CandidateDocument, ScoredPassage


# --- Search results (also the cached payload) ---


class RelevantPage(BaseModel):
    page_number: int
    page_content: str
    score: float
    total_pages: int
    lines_from: int
    lines_to: int

    @classmethod
    def from_passage(cls, passage: ScoredPassage) -> RelevantPage:
        chunk = passage.chunk
        return cls(
            page_number=chunk.page_number,
            page_content=chunk.text,
            score=passage.score,
            total_pages=chunk.total_pages,
            lines_from=chunk.lines_from,
            lines_to=chunk.lines_to,
        )


class DocumentResult(BaseModel):
    pdf_url: str
    title: str
    snippet: str
    thumbnail: str
    relevant_pages: list[RelevantPage]

    @classmethod
    def from_passages(
        cls, document: CandidateDocument, passages: list[ScoredPassage]
    ) -> DocumentResult:
        """Build a result listing passages in page order.

        Passages arrive in relevance order; the sort is stable so passages
        from the same page keep that order.
        """
        pages = sorted(
            (RelevantPage.from_passage(p) for p in passages),
            key=lambda page: page.page_number,
        )
        return cls(
            pdf_url=document.url,
            title=document.title,
            snippet=document.snippet,
            thumbnail=document.thumbnail,
            relevant_pages=pages,
        )


# --- API request schemas ---


class SearchRequest(BaseModel):
    query: str = Field(max_length=1000)


# --- Error schema ---


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict = {}
