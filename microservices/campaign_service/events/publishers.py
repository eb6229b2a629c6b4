"""
Campaign Event Publishers

Publishes engine events to NATS. Publication is best-effort: failures are
logged and never interrupt the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.nats_client import Event

from ..models import ABTest, Campaign, CustomerJourney, Variant, WinnerResult
from .models import (
    ABTestCompletedEventData,
    CampaignEventType,
    CampaignLifecycleEventData,
    JourneyEventData,
)

logger = logging.getLogger(__name__)


class CampaignEventPublisher:
    """Publisher for campaign service events"""

    def __init__(self, event_bus=None):
        self.event_bus = event_bus
        self.source = "campaign_service"

    async def publish(
        self,
        event_type: CampaignEventType,
        data: Dict[str, Any],
        subject: Optional[str] = None,
    ) -> bool:
        """
        Publish an event to NATS.

        Args:
            event_type: The event type enum
            data: Event data payload
            subject: Entity the event is about

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = Event(
                event_type=event_type.value,
                source=self.source,
                data=data,
                subject=subject,
            )
            published = await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type.value}")
            return bool(published)

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Campaign Lifecycle Events
    # ====================

    async def publish_campaign_event(
        self,
        event_type: CampaignEventType,
        campaign: Campaign,
        journeys_created: Optional[int] = None,
        scheduled_launch_at: Optional[datetime] = None,
    ) -> bool:
        """Publish campaign.created / started / paused / completed"""
        data = CampaignLifecycleEventData(
            campaign_id=campaign.campaign_id,
            organization_id=campaign.organization_id,
            name=campaign.name,
            status=campaign.status.value,
            trigger_type=campaign.trigger.type.value,
            journeys_created=journeys_created,
            scheduled_launch_at=scheduled_launch_at,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(event_type, data.model_dump(mode="json"), subject=campaign.campaign_id)

    # ====================
    # Journey Events
    # ====================

    async def publish_journey_event(
        self,
        event_type: CampaignEventType,
        journey: CustomerJourney,
        **details: Any,
    ) -> bool:
        """Publish a journey.* event"""
        data = JourneyEventData(
            journey_id=journey.journey_id,
            campaign_id=journey.campaign_id,
            organization_id=journey.organization_id,
            customer_id=journey.customer_id,
            sequence_kind=journey.sequence_kind.value,
            status=journey.status.value,
            current_step=journey.current_step,
            timestamp=datetime.now(timezone.utc),
            **details,
        )
        return await self.publish(event_type, data.model_dump(mode="json"), subject=journey.journey_id)

    async def publish_journey_started(self, journey: CustomerJourney) -> bool:
        return await self.publish_journey_event(CampaignEventType.JOURNEY_STARTED, journey)

    async def publish_step_dispatched(
        self,
        journey: CustomerJourney,
        step_id: str,
        channel: str,
        variant: Optional[Variant] = None,
    ) -> bool:
        return await self.publish_journey_event(
            CampaignEventType.JOURNEY_STEP_DISPATCHED,
            journey,
            step_id=step_id,
            channel=channel,
            variant=variant.value if variant else None,
        )

    async def publish_step_skipped(self, journey: CustomerJourney, step_id: str) -> bool:
        return await self.publish_journey_event(
            CampaignEventType.JOURNEY_STEP_SKIPPED, journey, step_id=step_id
        )

    async def publish_step_failed(
        self, journey: CustomerJourney, step_id: str, error: str, attempts: int
    ) -> bool:
        return await self.publish_journey_event(
            CampaignEventType.JOURNEY_STEP_FAILED,
            journey,
            step_id=step_id,
            error=error,
            attempts=attempts,
        )

    async def publish_journey_completed(self, journey: CustomerJourney) -> bool:
        return await self.publish_journey_event(CampaignEventType.JOURNEY_COMPLETED, journey)

    async def publish_journey_paused(self, journey: CustomerJourney) -> bool:
        return await self.publish_journey_event(CampaignEventType.JOURNEY_PAUSED, journey)

    async def publish_journey_resumed(self, journey: CustomerJourney) -> bool:
        return await self.publish_journey_event(CampaignEventType.JOURNEY_RESUMED, journey)

    async def publish_journey_unsubscribed(self, journey: CustomerJourney) -> bool:
        return await self.publish_journey_event(CampaignEventType.JOURNEY_UNSUBSCRIBED, journey)

    # ====================
    # A/B Test Events
    # ====================

    async def publish_ab_test_completed(self, test: ABTest, result: WinnerResult) -> bool:
        """Publish abtest.completed event"""
        data = ABTestCompletedEventData(
            test_id=test.test_id,
            campaign_id=test.campaign_id,
            step_id=test.step_id,
            winner=result.winner.value if result.winner else None,
            confidence=result.confidence,
            reason=result.reason,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(
            CampaignEventType.ABTEST_COMPLETED, data.model_dump(mode="json"), subject=test.test_id
        )


__all__ = ["CampaignEventPublisher"]
