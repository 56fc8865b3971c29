"""
Vector Store

PostgreSQL + pgvector based storage and similarity search for programme
chunks. Filtering by party, thresholding, ordering and limiting all happen
in a single SQL statement; rows are never ranked in Python.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import StoreQueryError
from ..rag.models import RetrievalResult
from .models import Embedding, Party, PartyProgram
from .session import AsyncSessionLocal


class VectorStore:
    """
    PostgreSQL-backed vector store using pgvector for similarity search.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize with an async database session.

        Parameters
        ----------
        session : AsyncSession
            SQLAlchemy async session for database operations.
        """
        self._session = session

    async def add_program_embeddings(
        self,
        party_program_id: str,
        contents: Sequence[str],
        chapter_titles: Sequence[str | None],
        page_numbers: Sequence[int | None],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        """
        Add chunk embeddings for a programme.

        Returns
        -------
        int
            Number of embeddings added.
        """
        if not embeddings:
            return 0

        if not (len(contents) == len(chapter_titles) == len(page_numbers) == len(embeddings)):
            raise ValueError("Chunk metadata and embeddings must have equal length.")

        for content, chapter, page, emb in zip(
            contents, chapter_titles, page_numbers, embeddings
        ):
            self._session.add(
                Embedding(
                    party_program_id=party_program_id,
                    content=content,
                    chapter_title=chapter,
                    page_number=page,
                    embedding=list(emb),
                )
            )

        await self._session.flush()
        return len(embeddings)

    async def delete_program_embeddings(self, party_program_id: str) -> int:
        """
        Remove all embeddings for a programme.

        Returns the number of deleted rows.
        """
        stmt = delete(Embedding).where(Embedding.party_program_id == party_program_id)
        result = await self._session.execute(stmt)
        return result.rowcount

    async def count_program_embeddings(self, party_program_id: str) -> int:
        """Number of stored embeddings for a programme."""
        stmt = select(func.count()).select_from(Embedding).where(
            Embedding.party_program_id == party_program_id
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def search(
        self,
        query_embedding: Sequence[float],
        party_short_name: str,
        limit: int = 8,
        min_similarity: float = 0.6,
    ) -> List[RetrievalResult]:
        """
        Return the chunks of one party most similar to the query.

        Parameters
        ----------
        query_embedding : Sequence[float]
            Query vector.
        party_short_name : str
            Party code, matched case-insensitively.
        limit : int
            Maximum number of results.
        min_similarity : float
            Results must have similarity strictly greater than this.

        Returns
        -------
        List[RetrievalResult]
            Results ordered by descending similarity.

        Raises
        ------
        StoreQueryError
            If the database query fails.
        """
        # similarity = 1 - cosine distance (pgvector's <=> operator)
        similarity = 1 - Embedding.embedding.cosine_distance(list(query_embedding))
        similarity_col = similarity.label("similarity")

        stmt = (
            select(
                Embedding.content,
                similarity_col,
                Embedding.chapter_title,
                Embedding.page_number,
            )
            .join(PartyProgram, Embedding.party_program_id == PartyProgram.id)
            .join(Party, PartyProgram.party_id == Party.id)
            .where(
                similarity > min_similarity,
                func.lower(Party.short_name) == party_short_name.lower(),
            )
            .order_by(similarity_col.desc())
            .limit(limit)
        )

        try:
            result = await self._session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as exc:
            raise StoreQueryError(
                f"Similarity search failed for party '{party_short_name}': {type(exc).__name__}"
            ) from exc

        return [
            RetrievalResult(
                content=row.content,
                similarity=float(row.similarity),
                chapter_title=row.chapter_title or None,
                page_number=row.page_number,
            )
            for row in rows
        ]


@asynccontextmanager
async def vector_store_scope() -> AsyncIterator[VectorStore]:
    """
    Open a dedicated session for one retrieval.

    Concurrent retrievals must not share an AsyncSession, so each gets its own.
    """
    async with AsyncSessionLocal() as session:
        yield VectorStore(session)
