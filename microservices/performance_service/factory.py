"""
Performance Service Factory

Factory for creating performance service instances with proper dependency injection.
"""

import logging
from typing import Optional

from core.config import PlatformConfig
from core.nats_client import NATSEventBus

from .cycle_scheduler import CycleScheduler
from .performance_repository import PerformanceRepository
from .performance_service import PerformanceService

logger = logging.getLogger(__name__)


class PerformanceServiceFactory:
    """Factory for creating performance service components"""

    def __init__(self, config: Optional[PlatformConfig] = None):
        self.config = config or PlatformConfig.from_env()
        self._repository: Optional[PerformanceRepository] = None
        self._service: Optional[PerformanceService] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._scheduler: Optional[CycleScheduler] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Performance Service components...")

        # Initialize repository
        self._repository = PerformanceRepository(self.config.infra)
        await self._repository.initialize()

        # Initialize NATS client; events are best effort
        if not self.config.infra.nats_enabled:
            logger.info("NATS disabled, domain events will not be published")
        else:
            try:
                self._nats_client = NATSEventBus(
                    service_name="performance_service",
                    config=self.config.infra,
                )
                await self._nats_client.connect()
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._nats_client = None

        # Initialize main service
        self._service = PerformanceService(
            repository=self._repository,
            event_bus=self._nats_client,
            config=self.config.engine,
        )

        self._scheduler = CycleScheduler(self._service)

        logger.info("Performance Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Performance Service components...")

        if self._scheduler:
            await self._scheduler.stop()

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Performance Service components closed")

    @property
    def repository(self) -> PerformanceRepository:
        """Get performance repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def service(self) -> PerformanceService:
        """Get performance service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def scheduler(self) -> CycleScheduler:
        """Get cycle scheduler"""
        if not self._scheduler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._scheduler

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client


__all__ = ["PerformanceServiceFactory"]
