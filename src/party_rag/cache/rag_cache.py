"""
RAG Caches

Content-addressed caches layered over a ``CacheBackend``:

- EmbeddingCache:    normalized text -> embedding vector (long TTL)
- SearchResultCache: (query, party, limit, threshold) -> ranked results (short TTL)

Caching is an optimisation only. Reads that fail for any backend or payload
reason are reported as a miss; writes never raise and instead return a
``CacheWriteResult`` the caller is free to ignore.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..config import settings
from ..core.errors import CacheError
from ..rag.models import RetrievalResult
from .client import CacheBackend

logger = logging.getLogger("rag.cache")

KEY_PREFIX = "rag:"
EMBEDDING_KEY_PREFIX = "rag:embedding:"
SEARCH_KEY_PREFIX = "rag:search:"

# Failures that mean "treat as a miss": backend errors and unreadable payloads
_MISS_ERRORS = (CacheError, ValueError, KeyError, TypeError)


# ---------------------------------------------------------------------
# Key Derivation
# ---------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """
    Canonical form shared by the embedding cache key and provider input.

    Replaces literal escaped newlines (the two characters ``\\n``) with a
    space and trims surrounding whitespace.
    """
    return text.replace("\\n", " ").strip()


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def embedding_cache_key(text: str) -> str:
    return EMBEDDING_KEY_PREFIX + _sha256(normalize_text(text).lower())


def search_cache_key(
    query: str,
    party_short_name: str,
    limit: int,
    min_similarity: float,
) -> str:
    raw = f"{query.lower().strip()}:{party_short_name.lower()}:{limit}:{min_similarity}"
    return SEARCH_KEY_PREFIX + _sha256(raw)


# ---------------------------------------------------------------------
# Write Results
# ---------------------------------------------------------------------

class CacheWriteStatus(str, enum.Enum):
    STORED = "stored"
    FAILED = "failed"


@dataclass(frozen=True)
class CacheWriteResult:
    key: str
    status: CacheWriteStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is CacheWriteStatus.STORED


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _write(backend: CacheBackend, key: str, ttl: int, payload: dict) -> CacheWriteResult:
    try:
        await backend.set_with_expiry(key, ttl, json.dumps(payload))
    except (CacheError, TypeError, ValueError) as exc:
        logger.warning("Cache write failed for %s: %s", key, exc)
        return CacheWriteResult(key, CacheWriteStatus.FAILED, str(exc))
    return CacheWriteResult(key, CacheWriteStatus.STORED)


# ---------------------------------------------------------------------
# Embedding Cache
# ---------------------------------------------------------------------

class EmbeddingCache:
    def __init__(self, backend: CacheBackend, ttl_seconds: Optional[int] = None) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds or settings.embedding_cache_ttl_seconds

    async def get(self, text: str) -> Optional[List[float]]:
        key = embedding_cache_key(text)
        try:
            raw = await self._backend.get(key)
            if not raw:
                return None
            return [float(x) for x in json.loads(raw)["embedding"]]
        except _MISS_ERRORS as exc:
            logger.info("Embedding cache read degraded to miss: %s", exc)
            return None

    async def put(self, text: str, embedding: Sequence[float]) -> CacheWriteResult:
        payload = {"embedding": list(embedding), "timestamp": _now_ms()}
        return await _write(self._backend, embedding_cache_key(text), self.ttl_seconds, payload)


# ---------------------------------------------------------------------
# Search Result Cache
# ---------------------------------------------------------------------

class SearchResultCache:
    def __init__(self, backend: CacheBackend, ttl_seconds: Optional[int] = None) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds or settings.search_cache_ttl_seconds

    async def get(
        self,
        query: str,
        party_short_name: str,
        limit: int,
        min_similarity: float,
    ) -> Optional[List[RetrievalResult]]:
        key = search_cache_key(query, party_short_name, limit, min_similarity)
        try:
            raw = await self._backend.get(key)
            if not raw:
                return None
            return [RetrievalResult.model_validate(r) for r in json.loads(raw)["results"]]
        except _MISS_ERRORS as exc:
            logger.info("Search cache read degraded to miss: %s", exc)
            return None

    async def put(
        self,
        query: str,
        party_short_name: str,
        limit: int,
        min_similarity: float,
        results: Sequence[RetrievalResult],
    ) -> CacheWriteResult:
        payload = {
            "results": [r.model_dump() for r in results],
            "timestamp": _now_ms(),
        }
        key = search_cache_key(query, party_short_name, limit, min_similarity)
        return await _write(self._backend, key, self.ttl_seconds, payload)


# ---------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------

async def clear_rag_cache(backend: CacheBackend) -> int:
    """Delete every ``rag:*`` key. Returns the number removed (0 on failure)."""
    try:
        keys = await backend.keys_by_prefix(KEY_PREFIX)
        if not keys:
            return 0
        return await backend.delete(*keys)
    except CacheError as exc:
        logger.warning("Clearing RAG cache failed: %s", exc)
        return 0


async def get_rag_cache_stats(backend: CacheBackend) -> Dict[str, int]:
    try:
        search_keys = await backend.keys_by_prefix(SEARCH_KEY_PREFIX)
        embedding_keys = await backend.keys_by_prefix(EMBEDDING_KEY_PREFIX)
    except CacheError as exc:
        logger.warning("Reading RAG cache stats failed: %s", exc)
        return {"search_cache_size": 0, "embedding_cache_size": 0}

    return {
        "search_cache_size": len(search_keys),
        "embedding_cache_size": len(embedding_keys),
    }
