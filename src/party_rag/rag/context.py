"""
RAG Context Aggregation

Builds the grounding context handed to the chat model.

Single-party mode runs the full retrieval flow and returns None when nothing
clears the similarity threshold ("not covered").

Comparison mode fans out across parties concurrently. Each party prefers
the search result cache and polls it with exponential backoff instead of
recomputing, on the assumption that a sibling single-party request is
populating it. A party whose lookup fails, times out or is unknown yields
an absent context; the aggregate itself never raises.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..cache.rag_cache import normalize_text, search_cache_key
from ..config import settings
from ..core.errors import ValidationError
from ..core.perf import PerformanceLogger, performance_logger
from ..chat.messages import latest_question
from ..parties.service import get_party_name, normalize_short_name
from .models import (
    ComparisonRagContext,
    FormattedSearchResult,
    PartyContext,
    RagContext,
    RetrievalResult,
)
from .relevance import classify
from .retrieval import RetrievalService

logger = logging.getLogger("rag.context")

UNKNOWN_CHAPTER = "Ukjent kapittel"


def require_question(text: Optional[str]) -> str:
    """
    Return the question in canonical form.

    Raises
    ------
    ValidationError
        If nothing is left after normalization (blank text, or only
        escaped newlines).
    """
    question = normalize_text(text or "")
    if not question:
        raise ValidationError("Empty question")
    return question


def require_party_name(code: Optional[str]) -> str:
    """
    Return the display name for a party code.

    Raises
    ------
    ValidationError
        If the code is not a known party.
    """
    name = get_party_name(code)
    if name is None:
        raise ValidationError(f"Unknown party code: {code!r}")
    return name


def format_rag_context(
    party_name: str,
    question: str,
    results: Sequence[RetrievalResult],
) -> RagContext:
    """Number, classify and round results in search order."""
    formatted = []
    for index, result in enumerate(results, start=1):
        level = classify(result.similarity)
        formatted.append(
            FormattedSearchResult(
                id=index,
                content=result.content,
                chapter_title=result.chapter_title or UNKNOWN_CHAPTER,
                page_number=result.page_number,
                similarity=round(result.similarity, 2),
                relevance=level.value,
                relevance_note=level.note,
            )
        )

    avg = sum(r.similarity for r in results) / len(results) if results else 0.0

    return RagContext(
        party_name=party_name,
        results_count=len(results),
        avg_similarity=round(avg, 2),
        search_results=formatted,
        user_question=question,
    )


class RagContextBuilder:
    """
    Orchestrates retrieval for one party or a comparison across parties.

    ``sleep`` and ``clock`` are injectable so tests can drive the backoff
    loop without real delays.
    """

    def __init__(
        self,
        retrieval: RetrievalService,
        default_limit: Optional[int] = None,
        default_min_similarity: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        compute_on_miss: Optional[bool] = None,
        perf: Optional[PerformanceLogger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.retrieval = retrieval
        self.default_limit = (
            default_limit if default_limit is not None else settings.default_content_limit
        )
        self.default_min_similarity = (
            default_min_similarity
            if default_min_similarity is not None
            else settings.default_similarity_threshold
        )
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None else settings.comparison_retry_attempts
        )
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.comparison_retry_base_delay_seconds
        )
        self.compute_on_miss = (
            compute_on_miss if compute_on_miss is not None else settings.comparison_compute_on_miss
        )
        self._perf = perf or performance_logger
        self._sleep = sleep
        self._clock = clock
        self._compute_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Single-party mode
    # ------------------------------------------------------------------

    async def build_rag_context(
        self,
        party_name: Optional[str],
        messages: Optional[Sequence[Any]],
        party_short_name: Optional[str],
        request_id: str = "unknown",
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> Optional[RagContext]:
        """
        Return the grounding context for the latest question, or None.

        None means either there was nothing to ask (no party or empty
        question) or no chunk cleared the threshold.

        Raises
        ------
        ProviderError, StoreQueryError
            Retrieval failures are left to the caller.
        """
        if not party_name:
            return None

        try:
            question = require_question(latest_question(messages))
        except ValidationError as exc:
            self._perf.milestone(request_id, "rag-context-skipped", reason=str(exc))
            return None

        limit = limit if limit is not None else self.default_limit
        min_similarity = (
            min_similarity if min_similarity is not None else self.default_min_similarity
        )
        code = party_short_name or ""

        self._perf.milestone(
            request_id,
            "rag-search-started",
            question_length=len(question),
            party_short_name=code or "unknown",
        )

        async with self._perf.timed(request_id, "rag-search"):
            results = await self.retrieval.find_relevant_content(
                question,
                code,
                limit=limit,
                min_similarity=min_similarity,
                request_id=request_id,
            )

        if not results:
            self._perf.milestone(
                request_id,
                "rag-context-no-results",
                party_short_name=code or "unknown",
                search_threshold=min_similarity,
            )
            return None

        context = format_rag_context(party_name, question, results)

        self._perf.milestone(
            request_id,
            "rag-context-prepared",
            results_count=context.results_count,
            avg_similarity=context.avg_similarity,
            party_short_name=code or "unknown",
        )
        return context

    # ------------------------------------------------------------------
    # Comparison mode
    # ------------------------------------------------------------------

    async def build_comparison_rag_context(
        self,
        party_short_names: Sequence[str],
        question: str,
        request_id: str = "unknown",
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> ComparisonRagContext:
        """
        Gather contexts for several parties concurrently.

        ``party_contexts`` keeps the requested order. ``deadline`` is an
        event-loop time (``loop.time()``) after which no further backoff
        waits are started.
        """
        limit = limit if limit is not None else self.default_limit
        min_similarity = (
            min_similarity if min_similarity is not None else self.default_min_similarity
        )

        try:
            question = require_question(question)
        except ValidationError:
            self._perf.milestone(request_id, "comparison-empty-question")
            party_contexts = [
                PartyContext(party_short_name=code, party_name=get_party_name(code))
                for code in party_short_names
            ]
            return ComparisonRagContext(
                party_contexts=party_contexts,
                total_results_count=0,
                user_question="",
            )

        self._perf.milestone(
            request_id,
            "comparison-rag-started",
            party_count=len(party_short_names),
            parties=list(party_short_names),
        )

        async with self._perf.timed(request_id, "comparison-rag-search"):
            party_contexts: List[PartyContext] = list(
                await asyncio.gather(
                    *(
                        self._party_context(code, question, limit, min_similarity, request_id, deadline)
                        for code in party_short_names
                    )
                )
            )

        total = sum(p.rag_context.results_count for p in party_contexts if p.rag_context)

        self._perf.milestone(
            request_id,
            "comparison-rag-prepared",
            total_results=total,
            parties_with_content=sum(1 for p in party_contexts if p.rag_context),
        )

        return ComparisonRagContext(
            party_contexts=party_contexts,
            total_results_count=total,
            user_question=question,
        )

    async def _party_context(
        self,
        code: str,
        question: str,
        limit: int,
        min_similarity: float,
        request_id: str,
        deadline: Optional[float],
    ) -> PartyContext:
        try:
            party_name = require_party_name(code)
        except ValidationError:
            self._perf.milestone(request_id, "comparison-unknown-party", party_short_name=code)
            return PartyContext(party_short_name=code)

        lookup_code = normalize_short_name(code)
        try:
            results = await self._poll_search_cache(
                question, lookup_code, limit, min_similarity, request_id, deadline
            )
            if results is None and self.compute_on_miss:
                results = await self._compute_once(
                    question, lookup_code, limit, min_similarity, request_id
                )
        except Exception as exc:
            logger.warning(
                "Comparison retrieval failed for %s: %s",
                code,
                exc,
                extra={
                    "request_id": request_id,
                    "party_short_name": code,
                    "error_type": type(exc).__name__,
                },
            )
            return PartyContext(party_short_name=code, party_name=party_name)

        if not results:
            return PartyContext(party_short_name=code, party_name=party_name)

        return PartyContext(
            party_short_name=code,
            party_name=party_name,
            rag_context=format_rag_context(party_name, question, results),
        )

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    async def _poll_search_cache(
        self,
        question: str,
        code: str,
        limit: int,
        min_similarity: float,
        request_id: str,
        deadline: Optional[float],
    ) -> Optional[List[RetrievalResult]]:
        """
        Try the search cache now, then up to ``retry_attempts`` more times
        with delays of base, 2*base, 4*base, ... Returns None when exhausted.
        """
        results = await self.retrieval.cached_results(question, code, limit, min_similarity)
        if results is not None:
            self._perf.milestone(request_id, "comparison-cache-hit", party_short_name=code, attempt=0)
            return results

        delay = self.retry_base_delay
        for attempt in range(1, self.retry_attempts + 1):
            if deadline is not None and self._now() + delay > deadline:
                self._perf.milestone(
                    request_id, "comparison-cache-deadline", party_short_name=code, attempt=attempt
                )
                return None

            await self._sleep(delay)

            results = await self.retrieval.cached_results(question, code, limit, min_similarity)
            if results is not None:
                self._perf.milestone(
                    request_id, "comparison-cache-hit", party_short_name=code, attempt=attempt
                )
                return results
            delay *= 2

        self._perf.milestone(
            request_id,
            "comparison-cache-exhausted",
            party_short_name=code,
            attempts=self.retry_attempts,
        )
        return None

    async def _compute_once(
        self,
        question: str,
        code: str,
        limit: int,
        min_similarity: float,
        request_id: str,
    ) -> List[RetrievalResult]:
        """Run retrieval, letting only one task compute per cache key."""
        key = search_cache_key(question, code, limit, min_similarity)
        lock = self._compute_locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                # A task that held the lock may have filled the cache
                return await self.retrieval.find_relevant_content(
                    question,
                    code,
                    limit=limit,
                    min_similarity=min_similarity,
                    request_id=request_id,
                )
        finally:
            if not lock.locked() and self._compute_locks.get(key) is lock:
                self._compute_locks.pop(key, None)
