"""Async Redis client for event publishing."""

from redis.asyncio import ConnectionPool, Redis

from .config import Settings, settings

_pools: dict[str, ConnectionPool] = {}


def get_redis_client(config: Settings | None = None) -> Redis:
    """Get an async Redis client from a pool shared per URL."""
    url = (config or settings).redis_url
    pool = _pools.get(url)
    if pool is None:
        pool = ConnectionPool.from_url(url, max_connections=20, decode_responses=True)
        _pools[url] = pool
    return Redis(connection_pool=pool)
