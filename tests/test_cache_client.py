"""
Cache Client Tests

The Redis connection is replaced by AsyncMock objects; no server is needed.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeout

from party_rag.cache.client import CacheClient, ConnectionStatus
from party_rag.core.errors import CacheError


def make_redis(ping_side_effect=None):
    client = AsyncMock()
    client.ping.side_effect = ping_side_effect
    return client


class TestConnect:

    @pytest.mark.asyncio
    async def test_connects_on_first_attempt(self):
        cache = CacheClient(url="redis://test", max_attempts=3, base_delay=0)
        redis_client = make_redis()

        with patch.object(cache, "_create_redis", return_value=redis_client):
            result = await cache.connect()

        assert result.connected
        assert result.status is ConnectionStatus.CONNECTED
        assert result.attempts == 1
        assert cache.connected

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self):
        cache = CacheClient(url="redis://test", max_attempts=3, base_delay=0.5)
        failing = make_redis(RedisConnectionError("refused"))
        healthy = make_redis()

        with patch.object(cache, "_create_redis", side_effect=[failing, failing, healthy]), \
             patch("party_rag.cache.client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await cache.connect()

        assert result.connected
        assert result.attempts == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
        assert failing.aclose.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts_without_raising(self):
        cache = CacheClient(url="redis://test", max_attempts=2, base_delay=0)

        with patch.object(
            cache,
            "_create_redis",
            side_effect=lambda: make_redis(RedisTimeout("timed out")),
        ):
            result = await cache.connect()

        assert not result.connected
        assert result.status is ConnectionStatus.EXHAUSTED
        assert result.attempts == 2
        assert "timed out" in result.error
        assert not cache.connected

    @pytest.mark.asyncio
    async def test_close_releases_connection(self):
        cache = CacheClient(url="redis://test", max_attempts=1)
        redis_client = make_redis()

        with patch.object(cache, "_create_redis", return_value=redis_client):
            await cache.connect()
        await cache.close()

        redis_client.aclose.assert_awaited_once()
        assert not cache.connected


class TestOperations:

    @pytest.fixture
    def connected(self):
        cache = CacheClient(url="redis://test", max_attempts=1)
        cache._redis = AsyncMock()
        return cache

    @pytest.mark.asyncio
    async def test_operations_require_connection(self):
        cache = CacheClient(url="redis://test")

        with pytest.raises(CacheError):
            await cache.get("rag:x")

    @pytest.mark.asyncio
    async def test_set_with_expiry_uses_setex(self, connected):
        await connected.set_with_expiry("rag:x", 60, "value")
        connected._redis.setex.assert_awaited_once_with("rag:x", 60, "value")

    @pytest.mark.asyncio
    async def test_redis_errors_become_cache_errors(self, connected):
        connected._redis.get.side_effect = RedisConnectionError("gone")

        with pytest.raises(CacheError):
            await connected.get("rag:x")

    @pytest.mark.asyncio
    async def test_delete_without_keys_is_noop(self, connected):
        assert await connected.delete() == 0
        connected._redis.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_keys_by_prefix_scans(self, connected):
        async def scan_iter(match):
            assert match == "rag:search:*"
            for key in ("rag:search:a", "rag:search:b"):
                yield key

        connected._redis.scan_iter = MagicMock(side_effect=scan_iter)

        assert await connected.keys_by_prefix("rag:search:") == ["rag:search:a", "rag:search:b"]


class TestHealth:

    @pytest.mark.asyncio
    async def test_disconnected_health(self):
        cache = CacheClient(url="redis://test")
        health = await cache.health()

        assert health.connected is False
        assert health.info == {}

    @pytest.mark.asyncio
    async def test_connected_health_summarizes_info(self):
        cache = CacheClient(url="redis://test")
        cache._redis = AsyncMock()
        cache._redis.info.side_effect = [
            {
                "used_memory_human": "1.2M",
                "used_memory_peak_human": "2.0M",
                "mem_fragmentation_ratio": 1.5,
            },
            {
                "total_connections_received": 7,
                "total_commands_processed": 99,
                "instantaneous_ops_per_sec": 3,
            },
        ]

        health = await cache.health()

        assert health.connected is True
        assert health.latency_ms is not None
        assert health.info["memory"] == {"used": "1.2M", "peak": "2.0M", "fragmentation": "1.5"}
        assert health.info["stats"] == {
            "total_connections": 7,
            "total_commands": 99,
            "instantaneous_ops": 3,
        }
