"""
Health Routes

Liveness plus Redis and cache diagnostics. The cache is optional for
correctness, so a missing Redis reports ``degraded`` rather than failing.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_cache_client, get_started_at
from .models import (
    CacheClearResponse,
    CacheStats,
    RedisHealthResponse,
    RedisInfo,
    SystemCacheStatus,
    SystemHealthResponse,
    SystemRedisStatus,
)
from ..cache.client import CacheClient
from ..cache.rag_cache import clear_rag_cache, get_rag_cache_stats

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/redis", response_model=RedisHealthResponse)
async def redis_health(
    cache: Annotated[CacheClient, Depends(get_cache_client)],
) -> RedisHealthResponse:
    status, stats = await asyncio.gather(cache.health(), get_rag_cache_stats(cache))

    info = None
    if status.connected and status.info:
        info = RedisInfo(**status.info, latency_ms=status.latency_ms)

    return RedisHealthResponse(
        connected=status.connected,
        connection_time_ms=status.connection_time_ms,
        last_error=status.last_error,
        info=info,
        cache_stats=CacheStats(**stats),
    )


@router.get("/health/system", response_model=SystemHealthResponse)
async def system_health(
    cache: Annotated[CacheClient, Depends(get_cache_client)],
    started_at: Annotated[float, Depends(get_started_at)],
) -> SystemHealthResponse:
    status, stats = await asyncio.gather(cache.health(), get_rag_cache_stats(cache))

    return SystemHealthResponse(
        status="healthy" if status.connected else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=round(time.time() - started_at, 3),
        redis=SystemRedisStatus(connected=status.connected, latency_ms=status.latency_ms),
        cache=SystemCacheStatus(
            total_entries=stats["search_cache_size"] + stats["embedding_cache_size"],
            search_entries=stats["search_cache_size"],
            embedding_entries=stats["embedding_cache_size"],
        ),
    )


@router.delete("/health/cache", response_model=CacheClearResponse)
async def clear_cache(
    cache: Annotated[CacheClient, Depends(get_cache_client)],
) -> CacheClearResponse:
    return CacheClearResponse(deleted=await clear_rag_cache(cache))
