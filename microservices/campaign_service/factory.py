"""
Campaign Service Factory

Factory for creating campaign service instances with proper dependency injection.
"""

import logging
from typing import Optional

from core.config import CampaignEngineConfig, get_settings
from core.nats_client import NATSEventBus

from .audience_resolver import AudienceResolver
from .campaign_repository import CampaignRepository
from .campaign_service import CampaignService
from .clients.customer_client import CustomerClient
from .clients.email_client import EmailClient
from .clients.message_client import MessageClient
from .events.handlers import CampaignEventHandler
from .events.models import CampaignSubscribedEventType
from .events.publishers import CampaignEventPublisher
from .journey_state_machine import JourneyLocks, JourneyStateMachine
from .step_scheduler import StepScheduler
from .variant_assigner import VariantAssigner

logger = logging.getLogger(__name__)


class CampaignServiceFactory:
    """Factory for creating campaign service components"""

    def __init__(self, config: Optional[CampaignEngineConfig] = None):
        self.config = config or get_settings()
        self._repository: Optional[CampaignRepository] = None
        self._service: Optional[CampaignService] = None
        self._scheduler: Optional[StepScheduler] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._event_handler: Optional[CampaignEventHandler] = None
        self._event_publisher: Optional[CampaignEventPublisher] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Campaign Service components...")

        # Initialize repository
        self._repository = CampaignRepository()
        await self._repository.initialize()

        # Initialize NATS client
        if self.config.infra.nats_enabled:
            try:
                self._nats_client = NATSEventBus(
                    service_name=self.config.service_name,
                    servers=self.config.infra.nats_servers,
                )
                await self._nats_client.connect()
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._nats_client = None
        self._event_publisher = CampaignEventPublisher(self._nats_client)

        # Initialize collaborator clients
        services = self.config.services
        customer_client = CustomerClient(services.customer_service_url, services.http_timeout_seconds)
        email_client = EmailClient(services.email_service_url, services.http_timeout_seconds)
        message_client = MessageClient(services.message_service_url, services.http_timeout_seconds)

        # Initialize engine components
        engine = self.config.engine
        locks = JourneyLocks()
        state_machine = JourneyStateMachine(self._repository)
        variant_assigner = VariantAssigner(
            repository=self._repository,
            min_sample_size=engine.ab_min_sample_size,
            significance_level=engine.ab_significance_level,
        )
        self._scheduler = StepScheduler(
            repository=self._repository,
            state_machine=state_machine,
            locks=locks,
            variant_assigner=variant_assigner,
            email_channel=email_client,
            message_channel=message_client,
            customer_store=customer_client,
            publisher=self._event_publisher,
            config=engine,
        )

        # Initialize main service
        self._service = CampaignService(
            repository=self._repository,
            state_machine=state_machine,
            scheduler=self._scheduler,
            audience_resolver=AudienceResolver(customer_client),
            variant_assigner=variant_assigner,
            locks=locks,
            publisher=self._event_publisher,
        )

        # Initialize event handler
        self._event_handler = CampaignEventHandler(campaign_service=self._service)
        if self._nats_client:
            for event_type in CampaignSubscribedEventType:
                await self._nats_client.subscribe(
                    event_type.value,
                    self._event_handler.handle_nats_event,
                )

        logger.info("Campaign Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Campaign Service components...")

        if self._scheduler:
            await self._scheduler.stop()

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Campaign Service components closed")

    @property
    def repository(self) -> CampaignRepository:
        """Get campaign repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def service(self) -> CampaignService:
        """Get campaign service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def scheduler(self) -> StepScheduler:
        """Get step scheduler"""
        if not self._scheduler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._scheduler

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client

    @property
    def event_handler(self) -> CampaignEventHandler:
        """Get event handler"""
        if not self._event_handler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._event_handler

    @property
    def event_publisher(self) -> Optional[CampaignEventPublisher]:
        """Get event publisher"""
        return self._event_publisher


__all__ = ["CampaignServiceFactory"]
