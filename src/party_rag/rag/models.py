"""
Retrieval Data Models

Value types produced by the retrieval core and handed to the chat layer.
None of these are persisted except inside the search result cache.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RetrievalResult(BaseModel):
    """One chunk returned by similarity search."""

    content: str
    similarity: float = Field(..., description="1 - cosine distance; higher is more similar.")
    chapter_title: Optional[str] = None
    page_number: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class FormattedSearchResult(BaseModel):
    """A retrieval result prepared for the prompt, with a citation id."""

    id: int = Field(..., ge=1)
    content: str
    chapter_title: str
    page_number: Optional[int] = None
    similarity: float
    relevance: str
    relevance_note: str


class RagContext(BaseModel):
    """Grounding bundle for one party and one question."""

    party_name: str
    results_count: int
    avg_similarity: float
    search_results: List[FormattedSearchResult]
    user_question: str


class PartyContext(BaseModel):
    """One requested party in a comparison. ``rag_context`` is None when absent."""

    party_short_name: str
    party_name: Optional[str] = None
    rag_context: Optional[RagContext] = None


class ComparisonRagContext(BaseModel):
    party_contexts: List[PartyContext]
    total_results_count: int
    user_question: str

    @property
    def parties_with_content(self) -> List[PartyContext]:
        return [p for p in self.party_contexts if p.rag_context is not None]
