"""
Service context - owns the shared connections and wires the services
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.cache import RedisManager
from core.config import ApplicationConfig, configure_logging, get_config
from core.database import DatabaseManager
from domains.annotation.repositories.annotation_repository import (
    AnnotationRepository,
    MongoAnnotationRepository,
    RedisAnnotationRepository
)
from domains.annotation.services.annotation_service import AnnotationService
from domains.participant.services.aggregation_service import AggregationService
from domains.participant.services.participant_service import ParticipantService
from providers.fetcher import PaginatingFetcher, Transport
from providers.registry import ProviderRegistry
from providers.transport import AiohttpTransport

logger = logging.getLogger(__name__)


class DiscoveryServiceContext:
    """
    Centralized service context for one registry

    Builds the shared aiohttp transport and the configured annotation
    backend, then the services on top of them. A transport or repository
    may be supplied to replace the default one.
    Root logging is configured from `config.logging` unless
    `setup_logging` is False.
    """

    def __init__(self, registry: ProviderRegistry, config: Optional[ApplicationConfig] = None,
                 transport: Optional[Transport] = None,
                 repository: Optional[AnnotationRepository] = None,
                 setup_logging: bool = True):
        self.registry = registry
        self.config = config or get_config()
        self.transport = transport
        self.repository = repository
        self.redis_manager: Optional[RedisManager] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.participant_service: Optional[ParticipantService] = None
        self.setup_logging = setup_logging
        self.start_time = datetime.now(timezone.utc)
        self._initialized = False

    async def initialize(self) -> ParticipantService:
        """Initialize all connections and services"""
        if self._initialized:
            return self.participant_service

        if self.setup_logging:
            configure_logging(self.config.logging)
        logger.info("Initializing Discovery Data Service context...")

        if self.transport is None:
            self.transport = AiohttpTransport(self.config.http)
        if isinstance(self.transport, AiohttpTransport):
            await self.transport.initialize()

        if self.repository is None:
            self.repository = await self._init_repository()

        fetcher = PaginatingFetcher(self.transport, max_pages=self.config.http.max_pages)
        aggregation_service = AggregationService(self.registry, fetcher, self.config.aggregation)
        annotation_service = AnnotationService(self.repository, self.config.annotation)
        self.participant_service = ParticipantService(
            self.registry, aggregation_service, annotation_service, self.transport
        )

        self._initialized = True
        logger.info(f"Service context initialized with '{self.config.annotation.backend}' annotation backend")
        return self.participant_service

    async def _init_repository(self) -> AnnotationRepository:
        annotation = self.config.annotation
        if annotation.backend == "mongo":
            self.db_manager = DatabaseManager(self.config.database)
            await self.db_manager.initialize()
            return MongoAnnotationRepository(self.db_manager, annotation.collection)

        self.redis_manager = RedisManager(self.config.redis)
        await self.redis_manager.initialize()
        return RedisAnnotationRepository(self.redis_manager, annotation.key_prefix)

    async def cleanup(self) -> None:
        """Cleanup all connections"""
        if isinstance(self.transport, AiohttpTransport):
            await self.transport.cleanup()
        if self.redis_manager:
            await self.redis_manager.cleanup()
        if self.db_manager:
            await self.db_manager.cleanup()
        self._initialized = False
        logger.info("Service context closed")

    async def health_check(self) -> Dict[str, Any]:
        """Status of the annotation backend plus uptime"""
        if self.redis_manager:
            store = await self.redis_manager.health_check()
        elif self.db_manager:
            store = await self.db_manager.health_check()
        else:
            store = {"status": "external"}

        return {
            "status": "healthy" if store.get("status") in ("healthy", "external") else "degraded",
            "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
            "providers": len(self.registry.provider_names()),
            "annotation_store": store
        }

    async def __aenter__(self) -> ParticipantService:
        return await self.initialize()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()
