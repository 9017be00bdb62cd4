"""
MongoDB connection management for the annotation store
"""

import logging
from typing import Optional, Dict, Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection

from .config import get_database_config, DatabaseConfig

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the motor client used by the 'mongo' annotation backend.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or get_database_config()
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database connection"""
        if self._initialized:
            return

        logger.info(f"Initializing database connection to database {self.config.name}")

        try:
            self._client = AsyncIOMotorClient(
                self.config.uri,
                maxPoolSize=self.config.max_pool_size,
                minPoolSize=self.config.min_pool_size,
                maxIdleTimeMS=self.config.max_idle_time_ms,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms
            )

            await self._client.admin.command('ping')
            logger.info("Database connection established successfully")

            self._database = self._client[self.config.name]
            self._initialized = True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    async def cleanup(self) -> None:
        """Close database connections"""
        if self._client:
            self._client.close()
            self._initialized = False
            logger.info("Database connections closed")

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """Get the database instance"""
        if not self._initialized:
            raise RuntimeError("Database manager not initialized. Call initialize() first.")
        return self._database

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        """Get a collection by name"""
        return self.database[name]

    async def health_check(self) -> Dict[str, Any]:
        """Ping MongoDB and report database stats"""
        try:
            if not self._initialized:
                return {"status": "error", "message": "Database not initialized"}

            await self._client.admin.command('ping')
            stats = await self._database.command("dbStats")

            return {
                "status": "healthy",
                "database": self.config.name,
                "collections": stats.get("collections", 0),
                "objects": stats.get("objects", 0),
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }
