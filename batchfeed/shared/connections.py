# Connection pools for Redis and the HTTP listing source

from typing import Optional

import httpx
import redis.asyncio as aioredis
from redis.asyncio.connection import BlockingConnectionPool

from .config import Config, Settings, get_config, get_settings
from .observability import get_logger

logger = get_logger(__name__)

USER_AGENT = "batchfeed/0.1"


class ConnectionManager:
    """
    Manages the Redis pool and the HTTP client for one process.

    Use as an async context manager so that both are released when the
    run is over:

        async with ConnectionManager(settings, config) as connections:
            redis_client = await connections.get_redis_client()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config: Optional[Config] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or get_config()
        self._redis_pool: Optional[BlockingConnectionPool] = None
        self._redis_client: Optional[aioredis.Redis] = None
        self._http_client: Optional[httpx.AsyncClient] = None

    # Redis
    async def get_redis_client(self) -> aioredis.Redis:
        """Get or create Redis client"""
        if self._redis_client is None:
            logger.info(
                "Initializing Redis client",
                uri=self.settings.redis_uri,
                max_connections=self.settings.redis_max_connections,
            )
            # Blocking pool: callers wait for a free connection instead of
            # failing once max_connections are checked out.
            self._redis_pool = BlockingConnectionPool.from_url(
                self.settings.redis_uri,
                max_connections=self.settings.redis_max_connections,
                timeout=30,
                socket_timeout=30,
                socket_connect_timeout=5,
            )
            self._redis_client = aioredis.Redis(connection_pool=self._redis_pool)
        return self._redis_client

    async def close_redis(self) -> None:
        """Close Redis client"""
        if self._redis_client:
            logger.info("Closing Redis client")
            await self._redis_client.aclose()
            self._redis_client = None
        if self._redis_pool:
            await self._redis_pool.disconnect()
            self._redis_pool = None

    # HTTP
    def get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client"""
        if self._http_client is None:
            timeout = self.config.listing.timeout_seconds
            logger.info("Initializing HTTP client", timeout_seconds=timeout)
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._http_client

    async def close_http(self) -> None:
        """Close HTTP client"""
        if self._http_client:
            logger.info("Closing HTTP client")
            await self._http_client.aclose()
            self._http_client = None

    # Lifecycle management
    async def close_all(self) -> None:
        """Close all connections gracefully"""
        await self.close_http()
        await self.close_redis()
        logger.info("All connections closed")

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()
