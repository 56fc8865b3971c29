"""
Retrieval Flow

Search Result Cache -> (miss) query embedding [Embedding Cache -> (miss)
Embedder] -> similarity search -> Search Result Cache write-through.

Provider and store failures propagate as ProviderError / StoreQueryError;
cache failures never do.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable, List, Optional

from ..cache.rag_cache import EmbeddingCache, SearchResultCache, normalize_text
from ..core.perf import PerformanceLogger, performance_logger
from ..db.vector_store import VectorStore, vector_store_scope
from ..embeddings.embedder import Embedder
from .models import RetrievalResult

logger = logging.getLogger("rag.retrieval")

VectorStoreFactory = Callable[[], AbstractAsyncContextManager[VectorStore]]


def _mean_similarity(results: List[RetrievalResult]) -> float:
    if not results:
        return 0.0
    return sum(r.similarity for r in results) / len(results)


class RetrievalService:
    """
    Finds the chunks of one party's programme that best match a query.

    Parameters
    ----------
    embedder : Embedder
        Provider adapter used on embedding cache misses.
    embedding_cache, search_cache :
        Content-addressed caches sharing one backend.
    store_factory : VectorStoreFactory
        Returns an async context manager yielding a VectorStore. Each call
        gets its own session so concurrent retrievals are independent.
    """

    def __init__(
        self,
        embedder: Embedder,
        embedding_cache: EmbeddingCache,
        search_cache: SearchResultCache,
        store_factory: VectorStoreFactory = vector_store_scope,
        perf: Optional[PerformanceLogger] = None,
    ) -> None:
        self.embedder = embedder
        self.embedding_cache = embedding_cache
        self.search_cache = search_cache
        self._store_factory = store_factory
        self._perf = perf or performance_logger

    async def get_query_embedding(self, query: str, request_id: str = "unknown") -> List[float]:
        """Return the embedding for a query, from cache when possible."""
        text = normalize_text(query)

        cached = await self.embedding_cache.get(text)
        if cached is not None:
            self._perf.milestone(request_id, "embedding-cache-hit", input_length=len(text))
            return cached

        self._perf.milestone(request_id, "embedding-cache-miss", input_length=len(text))

        async with self._perf.timed(
            request_id,
            "openai-embedding-generation",
            input_length=len(text),
            model=self.embedder.model,
        ):
            embedding = await self.embedder.embed_one(text)

        write = await self.embedding_cache.put(text, embedding)
        if not write.ok:
            self._perf.milestone(request_id, "embedding-cache-write-failed", error=write.error)

        return embedding

    async def cached_results(
        self,
        query: str,
        party_short_name: str,
        limit: int,
        min_similarity: float,
    ) -> Optional[List[RetrievalResult]]:
        """Search cache lookup only; never computes."""
        return await self.search_cache.get(query, party_short_name, limit, min_similarity)

    async def find_relevant_content(
        self,
        query: str,
        party_short_name: str,
        limit: int = 8,
        min_similarity: float = 0.6,
        request_id: str = "unknown",
    ) -> List[RetrievalResult]:
        """
        Return up to ``limit`` results with similarity > ``min_similarity``.

        Raises
        ------
        ProviderError
            If the query embedding could not be generated.
        StoreQueryError
            If the similarity search failed.
        """
        cached = await self.cached_results(query, party_short_name, limit, min_similarity)
        if cached is not None:
            self._perf.milestone(
                request_id,
                "rag-search-cache-hit",
                party_short_name=party_short_name,
                results_count=len(cached),
                avg_similarity=_mean_similarity(cached),
            )
            return cached

        self._perf.milestone(
            request_id,
            "rag-search-cache-miss",
            party_short_name=party_short_name,
            query_length=len(query),
        )

        query_embedding = await self.get_query_embedding(query, request_id)

        async with self._perf.timed(
            request_id,
            "database-similarity-search",
            party_short_name=party_short_name,
            limit=limit,
            min_similarity=min_similarity,
        ):
            async with self._store_factory() as store:
                results = await store.search(
                    query_embedding,
                    party_short_name,
                    limit=limit,
                    min_similarity=min_similarity,
                )

        write = await self.search_cache.put(query, party_short_name, limit, min_similarity, results)
        if not write.ok:
            self._perf.milestone(request_id, "rag-search-cache-write-failed", error=write.error)

        self._perf.milestone(
            request_id,
            "rag-search-completed",
            party_short_name=party_short_name,
            results_count=len(results),
            avg_similarity=_mean_similarity(results),
        )
        return results
