"""
Cache Client

Thin asynchronous wrapper around ``redis.asyncio`` providing exactly the
operations the retrieval core needs:

- get / set-with-expiry / delete / keys-by-prefix
- explicit connect (bounded retry with exponential backoff) and close
- health reporting for the HTTP surface

The client is constructed explicitly and owned by application state
(see ``party_rag.main``); nothing here is a module-level singleton. Every
backend failure is raised as ``CacheError`` so the cache layer above can
downgrade it to a miss.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config import settings
from ..core.errors import CacheError

logger = logging.getLogger("rag.cache")


# ---------------------------------------------------------------------
# Backend Protocol
# ---------------------------------------------------------------------

class CacheBackend(Protocol):
    """Operations the RAG caches rely on. Implemented by CacheClient and test fakes."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set_with_expiry(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys_by_prefix(self, prefix: str) -> List[str]: ...


# ---------------------------------------------------------------------
# Result Types
# ---------------------------------------------------------------------

class ConnectionStatus(str, enum.Enum):
    CONNECTED = "connected"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ConnectionResult:
    status: ConnectionStatus
    attempts: int
    error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


@dataclass
class CacheHealth:
    connected: bool
    connection_time_ms: Optional[float] = None
    latency_ms: Optional[float] = None
    last_error: Optional[str] = None
    info: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------

class CacheClient:
    """
    Redis-backed cache client with explicit lifecycle.

    Call ``connect()`` on startup and ``close()`` on shutdown. Operations
    on a client that is not connected raise ``CacheError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        connect_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ) -> None:
        self.url = url or settings.redis_url
        self.connect_timeout = connect_timeout or settings.redis_connect_timeout_seconds
        self.max_attempts = max_attempts or settings.redis_connect_attempts
        self.base_delay = base_delay if base_delay is not None else settings.redis_connect_base_delay_seconds

        self._redis: Optional[redis.Redis] = None
        self._connected_at: Optional[float] = None
        self._connection_time_ms: Optional[float] = None
        self._last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _create_redis(self) -> redis.Redis:
        return redis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=self.connect_timeout,
        )

    async def connect(self) -> ConnectionResult:
        """
        Connect and verify with PING, retrying with exponential backoff.

        Never raises; returns ``EXHAUSTED`` with the last error once
        ``max_attempts`` is reached. The application keeps running with
        every cache lookup degrading to a miss.
        """
        delay = self.base_delay
        for attempt in range(1, self.max_attempts + 1):
            client = self._create_redis()
            started = time.perf_counter()
            try:
                await client.ping()
            except (RedisError, OSError) as exc:
                self._last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Redis connection attempt %d/%d failed: %s",
                    attempt,
                    self.max_attempts,
                    self._last_error,
                )
                await client.aclose()
                if attempt < self.max_attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue

            self._redis = client
            self._connection_time_ms = (time.perf_counter() - started) * 1000
            self._connected_at = time.time()
            self._last_error = None
            logger.info("Connected to Redis at %s (attempt %d)", self.url, attempt)
            return ConnectionResult(ConnectionStatus.CONNECTED, attempt)

        logger.error("Giving up on Redis after %d attempts", self.max_attempts)
        return ConnectionResult(ConnectionStatus.EXHAUSTED, self.max_attempts, self._last_error)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    @property
    def connected(self) -> bool:
        return self._redis is not None

    def _require(self) -> redis.Redis:
        if self._redis is None:
            raise CacheError("Cache client is not connected")
        return self._redis

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        client = self._require()
        try:
            return await client.get(key)
        except RedisError as exc:
            self._last_error = str(exc)
            raise CacheError(f"GET failed: {type(exc).__name__}") from exc

    async def set_with_expiry(self, key: str, ttl_seconds: int, value: str) -> None:
        client = self._require()
        try:
            await client.setex(key, ttl_seconds, value)
        except RedisError as exc:
            self._last_error = str(exc)
            raise CacheError(f"SETEX failed: {type(exc).__name__}") from exc

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        client = self._require()
        try:
            return await client.delete(*keys)
        except RedisError as exc:
            self._last_error = str(exc)
            raise CacheError(f"DEL failed: {type(exc).__name__}") from exc

    async def keys_by_prefix(self, prefix: str) -> List[str]:
        client = self._require()
        try:
            return [key async for key in client.scan_iter(match=f"{prefix}*")]
        except RedisError as exc:
            self._last_error = str(exc)
            raise CacheError(f"SCAN failed: {type(exc).__name__}") from exc

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health(self) -> CacheHealth:
        """Return connection state, ping latency and a memory/stats summary."""
        if self._redis is None:
            return CacheHealth(connected=False, last_error=self._last_error)

        try:
            started = time.perf_counter()
            await self._redis.ping()
            latency_ms = (time.perf_counter() - started) * 1000
            memory = await self._redis.info("memory")
            stats = await self._redis.info("stats")
        except RedisError as exc:
            self._last_error = str(exc)
            return CacheHealth(
                connected=False,
                connection_time_ms=self._connection_time_ms,
                last_error=self._last_error,
            )

        return CacheHealth(
            connected=True,
            connection_time_ms=self._connection_time_ms,
            latency_ms=round(latency_ms, 3),
            last_error=self._last_error,
            info={
                "memory": {
                    "used": str(memory.get("used_memory_human", "")),
                    "peak": str(memory.get("used_memory_peak_human", "")),
                    "fragmentation": str(memory.get("mem_fragmentation_ratio", "")),
                },
                "stats": {
                    "total_connections": int(stats.get("total_connections_received", 0)),
                    "total_commands": int(stats.get("total_commands_processed", 0)),
                    "instantaneous_ops": int(stats.get("instantaneous_ops_per_sec", 0)),
                },
            },
        )
