"""
Campaign Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    ABTest,
    Campaign,
    CampaignStatus,
    CustomerJourney,
    DripCampaign,
    ScheduledStep,
    ScheduleEntryStatus,
    StepOutcome,
    TriggerType,
    Variant,
)


# ====================
# Repository Protocol
# ====================


class CampaignRepositoryProtocol(Protocol):
    """Protocol for campaign data repository"""

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    # Campaign registry
    async def save_campaign(self, campaign: Campaign) -> Campaign:
        """Insert or update a campaign definition and status (never stats)"""
        ...

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        ...

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[CampaignStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        """List campaigns for a tenant"""
        ...

    async def list_active_campaigns_by_trigger(
        self, organization_id: str, trigger_type: TriggerType
    ) -> List[Campaign]:
        """Active campaigns listening for a trigger type"""
        ...

    async def increment_campaign_stats(
        self,
        campaign_id: str,
        increments: Dict[str, int],
        revenue: Optional[Decimal] = None,
        last_run: Optional[datetime] = None,
    ) -> None:
        """Atomically add to campaign counters"""
        ...

    # Drip campaigns
    async def save_drip_campaign(self, drip: DripCampaign) -> DripCampaign:
        """Insert or update a drip campaign"""
        ...

    async def get_drip_campaign(self, drip_id: str) -> Optional[DripCampaign]:
        """Get drip campaign by ID"""
        ...

    # Journeys
    async def create_journey(self, journey: CustomerJourney) -> CustomerJourney:
        """Insert a journey; raises DuplicateJourneyError for a live pair"""
        ...

    async def get_journey(self, journey_id: str) -> Optional[CustomerJourney]:
        """Get journey by ID"""
        ...

    async def get_journey_for_customer(
        self, campaign_id: str, customer_id: str
    ) -> Optional[CustomerJourney]:
        """Live journey for the pair, else the most recent one"""
        ...

    async def update_journey(
        self, journey: CustomerJourney, expected_version: int
    ) -> CustomerJourney:
        """Write a journey if its stored version still matches"""
        ...

    async def count_live_journeys(self, campaign_id: str) -> int:
        """Number of active or paused journeys for a campaign"""
        ...

    async def list_live_journeys_for_customer(
        self, customer_id: str, organization_id: Optional[str] = None
    ) -> List[CustomerJourney]:
        """Active or paused journeys of a customer across campaigns"""
        ...

    async def list_unscheduled_active_journeys(
        self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None
    ) -> List[CustomerJourney]:
        """Page of active journeys without a live entry, after a (last_activity, journey_id) cursor"""
        ...

    # Durable schedule
    async def create_schedule_entry(self, entry: ScheduledStep) -> Optional[ScheduledStep]:
        """Insert an entry; None when a live entry for the same step exists"""
        ...

    async def claim_due_entries(
        self, now: datetime, limit: int, lease_seconds: int
    ) -> List[ScheduledStep]:
        """Lease due pending entries (and expired leases) for processing"""
        ...

    async def update_schedule_entry_status(
        self,
        entry_id: str,
        status: ScheduleEntryStatus,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        """Move an entry to a new status and drop its lease"""
        ...

    async def reschedule_entry(
        self,
        entry_id: str,
        fire_at: datetime,
        last_error: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        """Return an entry to pending with a new fire time"""
        ...

    async def record_step_outcome(
        self,
        outcome: StepOutcome,
        journey: Optional[CustomerJourney] = None,
        expected_version: Optional[int] = None,
    ) -> Optional[CustomerJourney]:
        """Atomically write the advanced journey, counters and closed entry"""
        ...

    async def release_held_entries(self, campaign_id: str, fire_at: datetime) -> int:
        """Return held entries of a campaign to pending"""
        ...

    async def cancel_journey_entries(self, journey_id: str) -> int:
        """Cancel live entries of a journey"""
        ...

    async def cancel_campaign_entries(self, campaign_id: str) -> int:
        """Cancel live entries of a campaign"""
        ...

    async def get_live_entry(self, journey_id: str) -> Optional[ScheduledStep]:
        """Live entry of a journey, if any"""
        ...

    # A/B tests
    async def save_ab_test(self, test: ABTest) -> ABTest:
        """Insert or update an A/B test (never counters)"""
        ...

    async def get_ab_test(self, test_id: str) -> Optional[ABTest]:
        """Get A/B test by ID"""
        ...

    async def get_ab_test_for_step(self, campaign_id: str, step_id: str) -> Optional[ABTest]:
        """A/B test attached to a campaign step"""
        ...

    async def increment_variant_stats(
        self, test_id: str, variant: Variant, increments: Dict[str, int]
    ) -> None:
        """Atomically add to a variant's counters"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event"""
        ...


# ====================
# External Collaborator Protocols
# ====================


class EmailChannelProtocol(Protocol):
    """Protocol for the transactional email sender"""

    async def send(
        self,
        to_address: str,
        subject: str,
        body: str,
        variables: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """Send an email; True when accepted"""
        ...


class MessageChannelProtocol(Protocol):
    """Protocol for the in-app message sender"""

    async def send(
        self,
        customer_id: str,
        subject: str,
        body: str,
        idempotency_key: Optional[str] = None,
    ) -> bool:
        """Send an in-app message; True when accepted"""
        ...


class CustomerStoreProtocol(Protocol):
    """Protocol for the customer/segment store"""

    async def resolve_segment(
        self, segment_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Customer ids in a segment"""
        ...

    async def list_customers(
        self, organization_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Every customer visible to a tenant"""
        ...

    async def filter_customers(
        self, customer_ids: List[str], filters: Dict[str, Any]
    ) -> List[str]:
        """Subset of the given customers matching the filters"""
        ...

    async def get_contact(self, customer_id: str) -> Dict[str, Any]:
        """Contact details (email) for a customer"""
        ...


# ====================
# Custom Exceptions
# ====================


class CampaignServiceError(Exception):
    """Base exception for campaign service errors"""
    pass


class CampaignNotFoundError(CampaignServiceError):
    """Raised when campaign is not found"""
    pass


class DripCampaignNotFoundError(CampaignServiceError):
    """Raised when drip campaign is not found"""
    pass


class JourneyNotFoundError(CampaignServiceError):
    """Raised when customer journey is not found"""
    pass


class ABTestNotFoundError(CampaignServiceError):
    """Raised when A/B test is not found"""
    pass


class DuplicateJourneyError(CampaignServiceError):
    """Raised when a live journey already exists for the campaign/customer pair"""

    def __init__(self, message: str, journey_id: Optional[str] = None):
        super().__init__(message)
        self.journey_id = journey_id


class InvalidTransitionError(CampaignServiceError):
    """Raised when an entity is in the wrong state for an operation"""

    def __init__(self, message: str, current_status: Optional[Any] = None):
        super().__init__(message)
        self.current_status = current_status


class CampaignValidationError(CampaignServiceError):
    """Raised when campaign validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DispatchFailureError(CampaignServiceError):
    """Raised when a channel refuses or fails a send"""
    pass


class AudienceResolutionError(CampaignServiceError):
    """Raised when audience resolution fails"""
    pass


class ConcurrentModificationError(CampaignServiceError):
    """Raised when a journey changed underneath a writer"""
    pass


__all__ = [
    "CampaignRepositoryProtocol",
    "EventBusProtocol",
    "EmailChannelProtocol",
    "MessageChannelProtocol",
    "CustomerStoreProtocol",
    "CampaignServiceError",
    "CampaignNotFoundError",
    "DripCampaignNotFoundError",
    "JourneyNotFoundError",
    "ABTestNotFoundError",
    "DuplicateJourneyError",
    "InvalidTransitionError",
    "CampaignValidationError",
    "DispatchFailureError",
    "AudienceResolutionError",
    "ConcurrentModificationError",
]
