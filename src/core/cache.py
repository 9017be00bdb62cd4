"""
Redis connection management for the annotation store
"""

import logging
from typing import Optional, Dict, Any

import redis.asyncio as redis
from redis.exceptions import ConnectionError

from .config import get_redis_config, RedisConfig

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Owns the Redis connection pool shared by the 'redis' annotation backend.
    """

    def __init__(self, config: Optional[RedisConfig] = None):
        self.config = config or get_redis_config()
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize Redis connection pool and client"""
        if self._initialized:
            return

        logger.info(f"Initializing Redis connection to {self.config.host}:{self.config.port}")

        try:
            pool_kwargs = {
                "host": self.config.host,
                "port": self.config.port,
                "db": self.config.db,
                "max_connections": self.config.max_connections,
                "socket_timeout": self.config.socket_timeout,
                "socket_connect_timeout": self.config.socket_connect_timeout,
                "decode_responses": self.config.decode_responses,
                "retry_on_timeout": True,
                "retry_on_error": [ConnectionError],
            }

            if self.config.password:
                pool_kwargs["password"] = self.config.password

            self._pool = redis.ConnectionPool(**pool_kwargs)
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()
            logger.info("Redis connection established successfully")

            self._initialized = True

        except Exception as e:
            logger.error(f"Failed to initialize Redis: {e}")
            raise

    async def cleanup(self) -> None:
        """Close Redis connections"""
        if self._pool:
            await self._pool.disconnect()
            self._initialized = False
            logger.info("Redis connections closed")

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client instance"""
        if not self._initialized:
            raise RuntimeError("Redis manager not initialized. Call initialize() first.")
        return self._client

    async def health_check(self) -> Dict[str, Any]:
        """Ping Redis and report basic server info"""
        try:
            if not self._initialized:
                return {"status": "error", "message": "Redis not initialized"}

            if not await self._client.ping():
                return {"status": "unhealthy", "message": "Ping failed"}

            info = await self._client.info()
            return {
                "status": "healthy",
                "version": info.get("redis_version"),
                "connected_clients": info.get("connected_clients", 0),
                "used_memory_human": info.get("used_memory_human", "0B"),
            }

        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }
