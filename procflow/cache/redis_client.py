"""Namespaced Redis operations."""

import redis.asyncio as redis
from procflow.config import config


class RedisClient:
    """Namespaced Redis operations."""

    def __init__(self, url: str = None):
        self.pool = redis.ConnectionPool.from_url(url or config.redis_url)
        self.client = redis.Redis(connection_pool=self.pool)

    def _key(self, namespace: str, key: str) -> str:
        """Generate namespaced key."""
        return f"procflow:{namespace}:{key}"

    async def health(self) -> bool:
        """Check Redis connectivity."""
        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    async def close(self):
        await self.client.close()
