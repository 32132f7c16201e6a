import logging

import redis.asyncio as aioredis
from fastapi import Request

from storefront.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Process-wide handle around one redis.asyncio connection pool.

    The handle is created once and connected/closed by the application
    lifespan. Request code never builds its own client; it receives the
    connected one through the `get_redis` dependency.
    """

    def __init__(self, url: str = settings.REDIS_URL, socket_timeout: float = settings.REDIS_SOCKET_TIMEOUT):
        self.url = url
        self.socket_timeout = socket_timeout
        self._client: aioredis.Redis | None = None

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client is not connected")
        return self._client

    async def connect(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        """Verify Redis is reachable. Used at startup."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            return False


# ─── Dependency Injection ──────────────────────────────────────────────────────
def get_redis(request: Request) -> aioredis.Redis:
    """FastAPI dependency returning the connected client owned by the app."""
    return request.app.state.redis.client
