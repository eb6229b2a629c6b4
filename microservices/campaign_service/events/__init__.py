"""
Campaign Service Events

Event handlers and publishers for campaign service.
"""

from .models import (
    CampaignEventType,
    CampaignSubscribedEventType,
    TRIGGER_EVENT_MAP,
    CampaignLifecycleEventData,
    JourneyEventData,
    ABTestCompletedEventData,
    CustomerEventData,
    OrderCompletedEventData,
    NotificationEngagementEventData,
    UserUnsubscribedEventData,
)
from .handlers import CampaignEventHandler
from .publishers import CampaignEventPublisher

__all__ = [
    # Event Types
    "CampaignEventType",
    "CampaignSubscribedEventType",
    "TRIGGER_EVENT_MAP",
    # Event Data Models
    "CampaignLifecycleEventData",
    "JourneyEventData",
    "ABTestCompletedEventData",
    "CustomerEventData",
    "OrderCompletedEventData",
    "NotificationEngagementEventData",
    "UserUnsubscribedEventData",
    # Handler and Publisher
    "CampaignEventHandler",
    "CampaignEventPublisher",
]
