"""
API Models

Response schemas for the health and cache endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class CacheStats(BaseModel):
    search_cache_size: int = Field(..., ge=0)
    embedding_cache_size: int = Field(..., ge=0)


class RedisMemoryInfo(BaseModel):
    used: str
    peak: str
    fragmentation: str


class RedisStatsInfo(BaseModel):
    total_connections: int
    total_commands: int
    instantaneous_ops: int


class RedisInfo(BaseModel):
    memory: RedisMemoryInfo
    stats: RedisStatsInfo
    latency_ms: Optional[float] = None


class RedisHealthResponse(BaseModel):
    connected: bool
    connection_time_ms: Optional[float] = None
    last_error: Optional[str] = None
    info: Optional[RedisInfo] = None
    cache_stats: CacheStats


class SystemRedisStatus(BaseModel):
    connected: bool
    latency_ms: Optional[float] = None


class SystemCacheStatus(BaseModel):
    total_entries: int
    search_entries: int
    embedding_entries: int


class SystemHealthResponse(BaseModel):
    status: str = Field(..., description="'healthy' when Redis is reachable, else 'degraded'.")
    timestamp: str
    uptime_seconds: float
    redis: SystemRedisStatus
    cache: SystemCacheStatus


class CacheClearResponse(BaseModel):
    deleted: int
