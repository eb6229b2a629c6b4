"""
Campaign Event Handlers

Handles incoming events from other services: trigger events start
journeys, notification events feed engagement counters, opt-outs
unsubscribe customers.
"""

import logging
from typing import Any, Dict

from core.nats_client import Event

from ..models import DEFAULT_ORGANIZATION_ID, EngagementKind, EngagementRequest
from ..protocols import CampaignNotFoundError
from .models import (
    TRIGGER_EVENT_MAP,
    CampaignSubscribedEventType,
    CustomerEventData,
    NotificationEngagementEventData,
    OrderCompletedEventData,
    UserUnsubscribedEventData,
)

logger = logging.getLogger(__name__)


class CampaignEventHandler:
    """Handler for campaign service subscribed events"""

    def __init__(self, campaign_service):
        self.campaign_service = campaign_service

    async def handle_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Route event to appropriate handler"""
        handlers = {
            CampaignSubscribedEventType.ORDER_COMPLETED.value: self.handle_order_completed,
            CampaignSubscribedEventType.ORDER_SHIPPED.value: self.handle_trigger_event,
            CampaignSubscribedEventType.ORDER_DELIVERED.value: self.handle_trigger_event,
            CampaignSubscribedEventType.REVIEW_CREATED.value: self.handle_trigger_event,
            CampaignSubscribedEventType.CART_ABANDONED.value: self.handle_trigger_event,
            CampaignSubscribedEventType.USER_CREATED.value: self.handle_trigger_event,
            CampaignSubscribedEventType.USER_UNSUBSCRIBED.value: self.handle_user_unsubscribed,
            CampaignSubscribedEventType.NOTIFICATION_OPENED.value: self.handle_notification_engagement,
            CampaignSubscribedEventType.NOTIFICATION_CLICKED.value: self.handle_notification_engagement,
        }

        handler = handlers.get(event_type)
        if handler:
            try:
                await handler(event_type, data)
            except Exception as e:
                logger.error(f"Error handling event {event_type}: {e}", exc_info=True)
        else:
            logger.debug(f"No handler for event type: {event_type}")

    async def handle_nats_event(self, event: Event) -> None:
        """Adapter for NATSEventBus subscriptions"""
        await self.handle_event(event.type, event.data)

    async def handle_trigger_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Start journeys in campaigns listening for the mapped trigger"""
        event_data = CustomerEventData(**data)
        trigger_type = TRIGGER_EVENT_MAP[event_type]

        organization_id = event_data.organization_id
        if not organization_id:
            logger.debug(f"{event_type} without organization, using {DEFAULT_ORGANIZATION_ID}")
            organization_id = DEFAULT_ORGANIZATION_ID

        journeys = await self.campaign_service.trigger_campaigns(
            trigger_type,
            event_data.customer_id,
            data=data,
            organization_id=organization_id,
        )
        logger.debug(f"{event_type} for {event_data.customer_id}: {len(journeys)} journeys started")

    async def handle_order_completed(self, event_type: str, data: Dict[str, Any]) -> None:
        """
        Handle order.completed.

        Starts purchase-triggered campaigns, and records a conversion with
        revenue when the order is attributed to a campaign.
        """
        event_data = OrderCompletedEventData(**data)
        await self.handle_trigger_event(event_type, data)

        if not event_data.campaign_id:
            return

        try:
            await self.campaign_service.record_engagement(
                event_data.campaign_id,
                EngagementRequest(
                    customer_id=event_data.customer_id,
                    kind=EngagementKind.CONVERTED,
                    step_id=event_data.step_id,
                    amount=event_data.total_amount,
                ),
            )
        except CampaignNotFoundError:
            logger.warning(f"Order {event_data.order_id} attributed to unknown campaign {event_data.campaign_id}")

    async def handle_notification_engagement(self, event_type: str, data: Dict[str, Any]) -> None:
        """Handle notification.opened / notification.clicked"""
        event_data = NotificationEngagementEventData(**data)
        if not event_data.campaign_id:
            return

        kind = (
            EngagementKind.OPENED
            if event_type == CampaignSubscribedEventType.NOTIFICATION_OPENED.value
            else EngagementKind.CLICKED
        )
        try:
            await self.campaign_service.record_engagement(
                event_data.campaign_id,
                EngagementRequest(
                    customer_id=event_data.customer_id,
                    kind=kind,
                    step_id=event_data.step_id,
                ),
            )
        except CampaignNotFoundError:
            logger.debug(f"{event_type} for unknown campaign {event_data.campaign_id}")

    async def handle_user_unsubscribed(self, event_type: str, data: Dict[str, Any]) -> None:
        """Opt a customer out of one campaign, or of all when none is named"""
        event_data = UserUnsubscribedEventData(**data)

        if event_data.campaign_id:
            await self.campaign_service.unsubscribe_journey(
                event_data.campaign_id, event_data.customer_id
            )
            return

        await self.campaign_service.unsubscribe_customer(
            event_data.customer_id, organization_id=event_data.organization_id
        )


__all__ = ["CampaignEventHandler"]
