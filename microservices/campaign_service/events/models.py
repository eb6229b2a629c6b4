"""
Campaign Event Data Models

Event type definitions and data structures for campaign engine events.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..models import TriggerType


# =============================================================================
# Event Type Definitions
# =============================================================================


class CampaignEventType(str, Enum):
    """
    Events published by campaign_service.

    These are the authoritative event types for this service.
    Other services should reference these when subscribing.
    """
    # Campaign lifecycle events
    CREATED = "campaign.created"
    STARTED = "campaign.started"
    PAUSED = "campaign.paused"
    COMPLETED = "campaign.completed"

    # Journey events
    JOURNEY_STARTED = "journey.started"
    JOURNEY_STEP_DISPATCHED = "journey.step.dispatched"
    JOURNEY_STEP_SKIPPED = "journey.step.skipped"
    JOURNEY_STEP_FAILED = "journey.step.failed"
    JOURNEY_COMPLETED = "journey.completed"
    JOURNEY_PAUSED = "journey.paused"
    JOURNEY_RESUMED = "journey.resumed"
    JOURNEY_UNSUBSCRIBED = "journey.unsubscribed"

    # A/B test events
    ABTEST_COMPLETED = "abtest.completed"


class CampaignSubscribedEventType(str, Enum):
    """
    Events that campaign_service subscribes to from other services.
    """
    # Order events (from order_service)
    ORDER_COMPLETED = "order.completed"
    ORDER_SHIPPED = "order.shipped"
    ORDER_DELIVERED = "order.delivered"

    # Review and cart events
    REVIEW_CREATED = "review.created"
    CART_ABANDONED = "cart.abandoned"

    # User events (from account_service)
    USER_CREATED = "user.created"
    USER_UNSUBSCRIBED = "user.unsubscribed"

    # Notification events (from notification_service)
    NOTIFICATION_OPENED = "notification.opened"
    NOTIFICATION_CLICKED = "notification.clicked"


# Platform events that start journeys in campaigns with a matching trigger
TRIGGER_EVENT_MAP = {
    CampaignSubscribedEventType.ORDER_COMPLETED.value: TriggerType.PURCHASE,
    CampaignSubscribedEventType.ORDER_SHIPPED.value: TriggerType.SHIPMENT,
    CampaignSubscribedEventType.ORDER_DELIVERED.value: TriggerType.DELIVERY,
    CampaignSubscribedEventType.REVIEW_CREATED.value: TriggerType.REVIEW,
    CampaignSubscribedEventType.CART_ABANDONED.value: TriggerType.ABANDONED_CART,
    CampaignSubscribedEventType.USER_CREATED.value: TriggerType.SIGNUP,
}


# =============================================================================
# Event Data Models - Published Events
# =============================================================================


class CampaignLifecycleEventData(BaseModel):
    """campaign.created / started / paused / completed event data"""
    campaign_id: str = Field(..., description="Campaign ID")
    organization_id: str = Field(..., description="Organization ID")
    name: str = Field(..., description="Campaign name")
    status: str = Field(..., description="Campaign status after the change")
    trigger_type: str = Field(..., description="Trigger type")
    journeys_created: Optional[int] = Field(None, description="Journeys created by a launch")
    scheduled_launch_at: Optional[datetime] = Field(None, description="Deferred launch time")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class JourneyEventData(BaseModel):
    """journey.* event data"""
    journey_id: str = Field(..., description="Journey ID")
    campaign_id: str = Field(..., description="Campaign or drip ID")
    organization_id: str = Field(..., description="Organization ID")
    customer_id: str = Field(..., description="Customer ID")
    sequence_kind: str = Field(..., description="campaign or drip")
    status: str = Field(..., description="Journey status")
    current_step: int = Field(..., description="Next step index")
    step_id: Optional[str] = Field(None, description="Step concerned by the event")
    channel: Optional[str] = Field(None, description="email or message")
    variant: Optional[str] = Field(None, description="A/B variant sent")
    error: Optional[str] = Field(None, description="Last dispatch error")
    attempts: Optional[int] = Field(None, description="Dispatch attempts made")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class ABTestCompletedEventData(BaseModel):
    """abtest.completed event data"""
    test_id: str = Field(..., description="A/B test ID")
    campaign_id: str = Field(..., description="Campaign ID")
    step_id: str = Field(..., description="Step under test")
    winner: Optional[str] = Field(None, description="Winning variant, if any")
    confidence: float = Field(0.0, description="1 - p-value")
    reason: str = Field("", description="Why the test was or was not decided")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


# =============================================================================
# Event Data Models - Subscribed Events
# =============================================================================


class CustomerEventData(BaseModel):
    """Data from trigger events (orders, reviews, carts, signups)"""
    customer_id: str = Field(
        ...,
        validation_alias=AliasChoices("customer_id", "user_id"),
        description="Customer ID",
    )
    organization_id: Optional[str] = Field(None, description="Organization ID")

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("customer_id", mode="before")
    @classmethod
    def coerce_customer_id(cls, v):
        return str(v)


class OrderCompletedEventData(CustomerEventData):
    """Data from order.completed event"""
    order_id: Optional[str] = Field(None, description="Order ID")
    total_amount: Optional[Decimal] = Field(None, description="Order total")
    campaign_id: Optional[str] = Field(None, description="Attributed campaign")
    step_id: Optional[str] = Field(None, description="Attributed step")


class NotificationEngagementEventData(CustomerEventData):
    """Data from notification.opened / notification.clicked"""
    campaign_id: Optional[str] = Field(None, description="Campaign that sent the notification")
    step_id: Optional[str] = Field(None, description="Step that sent the notification")


class UserUnsubscribedEventData(CustomerEventData):
    """Data from user.unsubscribed event"""
    campaign_id: Optional[str] = Field(None, description="Single campaign; all when absent")


__all__ = [
    # Event Types
    "CampaignEventType",
    "CampaignSubscribedEventType",
    "TRIGGER_EVENT_MAP",
    # Published Event Data
    "CampaignLifecycleEventData",
    "JourneyEventData",
    "ABTestCompletedEventData",
    # Subscribed Event Data
    "CustomerEventData",
    "OrderCompletedEventData",
    "NotificationEngagementEventData",
    "UserUnsubscribedEventData",
]
