from .client import CacheBackend, CacheClient, ConnectionResult, ConnectionStatus
from .rag_cache import (
    CacheWriteResult,
    CacheWriteStatus,
    EmbeddingCache,
    SearchResultCache,
    clear_rag_cache,
    get_rag_cache_stats,
)

__all__ = [
    "CacheBackend",
    "CacheClient",
    "ConnectionResult",
    "ConnectionStatus",
    "CacheWriteResult",
    "CacheWriteStatus",
    "EmbeddingCache",
    "SearchResultCache",
    "clear_rag_cache",
    "get_rag_cache_stats",
]
