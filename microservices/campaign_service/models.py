"""
Campaign Service Data Models

Canonical data structures for the campaign orchestration engine:
campaign and drip definitions, customer journeys, the durable schedule
and A/B tests, plus the request/response models of the HTTP surface.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


# Tenant used when a request or event does not name one
DEFAULT_ORGANIZATION_ID = "default_org"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class CampaignType(str, Enum):
    """Delivery mix of a campaign"""
    EMAIL = "email"
    MESSAGE = "message"
    MIXED = "mixed"


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class TriggerType(str, Enum):
    """What causes customers to enter a campaign"""
    PURCHASE = "purchase"
    SHIPMENT = "shipment"
    DELIVERY = "delivery"
    REVIEW = "review"
    ABANDONED_CART = "abandoned_cart"
    SIGNUP = "signup"
    DATE = "date"
    MANUAL = "manual"


# Triggers fired by platform events rather than by an operator
EVENT_TRIGGER_TYPES = {
    TriggerType.PURCHASE,
    TriggerType.SHIPMENT,
    TriggerType.DELIVERY,
    TriggerType.REVIEW,
    TriggerType.ABANDONED_CART,
    TriggerType.SIGNUP,
}


class StepType(str, Enum):
    """Delivery channel of a single step"""
    EMAIL = "email"
    MESSAGE = "message"


class AudienceType(str, Enum):
    """Audience specification kind"""
    ALL = "all"
    SEGMENT = "segment"
    CUSTOM = "custom"


class JourneyStatus(str, Enum):
    """Customer journey status"""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    UNSUBSCRIBED = "unsubscribed"


TERMINAL_JOURNEY_STATUSES = {JourneyStatus.COMPLETED, JourneyStatus.UNSUBSCRIBED}


class SequenceKind(str, Enum):
    """Which kind of step sequence a journey walks"""
    CAMPAIGN = "campaign"
    DRIP = "drip"


class ABTestStatus(str, Enum):
    """A/B test status"""
    RUNNING = "running"
    COMPLETED = "completed"


class Variant(str, Enum):
    """A/B test variant"""
    A = "A"
    B = "B"


class ScheduleEntryKind(str, Enum):
    """Kind of durable due-work entry"""
    STEP = "step"
    LAUNCH = "launch"


class ScheduleEntryStatus(str, Enum):
    """Due-work entry status"""
    PENDING = "pending"
    PROCESSING = "processing"
    HELD = "held"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


LIVE_SCHEDULE_STATUSES = {
    ScheduleEntryStatus.PENDING,
    ScheduleEntryStatus.PROCESSING,
    ScheduleEntryStatus.HELD,
}


class EngagementKind(str, Enum):
    """Engagement signals reported after delivery"""
    OPENED = "opened"
    CLICKED = "clicked"
    REPLIED = "replied"
    CONVERTED = "converted"


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
    }


# =============================================================================
# CAMPAIGN MODELS
# =============================================================================

class CampaignTrigger(BaseContract):
    """Campaign trigger configuration"""
    type: TriggerType = Field(default=TriggerType.MANUAL)
    delay: float = Field(default=0, ge=0, description="Hours before step 0")
    conditions: Optional[Dict[str, Any]] = Field(None, description="Checked against trigger data")
    scheduled_date: Optional[datetime] = Field(None, description="Launch time for date triggers")


class AudienceFilters(BaseContract):
    """Narrowing criteria applied by the customer store"""
    min_orders: Optional[int] = Field(None, ge=0)
    max_orders: Optional[int] = Field(None, ge=0)
    min_spent: Optional[Decimal] = Field(None, ge=0)
    max_spent: Optional[Decimal] = Field(None, ge=0)
    last_order_days: Optional[int] = Field(None, ge=0, description="Ordered within N days")
    has_reviewed: Optional[bool] = None
    tags: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return not any(v is not None for v in self.model_dump().values())


class Audience(BaseContract):
    """Audience specification, resolved at dispatch time"""
    type: AudienceType = Field(default=AudienceType.ALL)
    segment_id: Optional[str] = None
    customer_ids: Optional[List[str]] = None
    filters: Optional[AudienceFilters] = None

    @field_validator("customer_ids", mode="before")
    @classmethod
    def coerce_customer_ids(cls, v):
        if v is None:
            return v
        return [str(c) for c in v]

    @model_validator(mode="after")
    def validate_source(self):
        if self.type == AudienceType.SEGMENT and not self.segment_id:
            raise ValueError("Segment audiences require segment_id")
        if self.type == AudienceType.CUSTOM and self.customer_ids is None:
            raise ValueError("Custom audiences require customer_ids")
        return self


class StepDefinition(BaseContract):
    """Shared shape of campaign and drip steps"""
    step_id: str = Field(default_factory=lambda: f"stp_{uuid4().hex[:16]}")
    order: int = Field(..., ge=0)
    type: StepType = Field(default=StepType.EMAIL)
    delay: float = Field(default=0, ge=0)
    template_id: Optional[str] = None
    subject: str = Field(default="", max_length=255)
    content: str = Field(default="")
    variables: Dict[str, Any] = Field(default_factory=dict)
    conditions: Optional[Dict[str, Any]] = None

    def delay_delta(self) -> timedelta:
        raise NotImplementedError


class CampaignStep(StepDefinition):
    """Campaign step; delay is in hours since the previous step"""

    def delay_delta(self) -> timedelta:
        return timedelta(hours=self.delay)


class DripStep(StepDefinition):
    """Drip step; delay is in days since the previous step"""

    def delay_delta(self) -> timedelta:
        return timedelta(days=self.delay)


def _ordered_steps(steps: List[StepDefinition]) -> List[StepDefinition]:
    if not steps:
        raise ValueError("At least one step is required")
    orders = [s.order for s in steps]
    if len(set(orders)) != len(orders):
        raise ValueError("Step order values must be unique")
    ids = [s.step_id for s in steps]
    if len(set(ids)) != len(ids):
        raise ValueError("Step ids must be unique")
    return sorted(steps, key=lambda s: s.order)


class CampaignStats(BaseContract):
    """Aggregate counters for a campaign"""
    total_sent: int = 0
    total_delivered: int = 0
    total_opened: int = 0
    total_clicked: int = 0
    total_replied: int = 0
    total_converted: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    revenue: Decimal = Field(default=Decimal("0"))
    last_run: Optional[datetime] = None

    @property
    def conversion_rate(self) -> float:
        if not self.total_delivered:
            return 0.0
        return self.total_converted / self.total_delivered


class Campaign(BaseContract):
    """Core Campaign model"""
    campaign_id: str = Field(default_factory=lambda: f"cmp_{uuid4().hex[:16]}")
    organization_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    campaign_type: CampaignType = Field(default=CampaignType.EMAIL)
    status: CampaignStatus = Field(default=CampaignStatus.DRAFT)

    trigger: CampaignTrigger = Field(default_factory=CampaignTrigger)
    steps: List[CampaignStep]
    audience: Audience = Field(default_factory=Audience)
    stats: CampaignStats = Field(default_factory=CampaignStats)

    # Audit
    created_by: Optional[str] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, v):
        return _ordered_steps(v)

    def step_index(self, step_id: str) -> Optional[int]:
        for i, step in enumerate(self.steps):
            if step.step_id == step_id:
                return i
        return None


class DripCampaign(BaseContract):
    """Standalone day-delayed sequence started per customer"""
    drip_id: str = Field(default_factory=lambda: f"drp_{uuid4().hex[:16]}")
    organization_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    steps: List[DripStep]
    is_active: bool = Field(default=True)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, v):
        return _ordered_steps(v)

    def step_index(self, step_id: str) -> Optional[int]:
        for i, step in enumerate(self.steps):
            if step.step_id == step_id:
                return i
        return None


# =============================================================================
# JOURNEY MODELS
# =============================================================================

class CustomerJourney(BaseContract):
    """Per-customer execution record through a campaign or drip sequence"""
    journey_id: str = Field(default_factory=lambda: f"jrn_{uuid4().hex[:16]}")
    organization_id: str
    campaign_id: str = Field(..., description="Owning campaign or drip id")
    sequence_kind: SequenceKind = Field(default=SequenceKind.CAMPAIGN)
    customer_id: str
    current_step: int = Field(default=0, ge=0)
    status: JourneyStatus = Field(default=JourneyStatus.ACTIVE)
    completed_steps: List[str] = Field(default_factory=list)
    skipped_steps: List[str] = Field(default_factory=list)
    failed_step_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0)
    started_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime = Field(default_factory=_utcnow)
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("customer_id", mode="before")
    @classmethod
    def coerce_customer_id(cls, v):
        return str(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOURNEY_STATUSES


class ScheduledStep(BaseContract):
    """
    Durable due-work entry.

    `attempts` counts failed dispatch (or launch) attempts only; claims
    that end held, cancelled or stale leave it unchanged.
    """
    entry_id: str = Field(default_factory=lambda: f"sch_{uuid4().hex[:16]}")
    kind: ScheduleEntryKind = Field(default=ScheduleEntryKind.STEP)
    campaign_id: str
    journey_id: Optional[str] = None
    sequence_kind: SequenceKind = Field(default=SequenceKind.CAMPAIGN)
    step_index: Optional[int] = None
    step_id: Optional[str] = None
    fire_at: datetime
    status: ScheduleEntryStatus = Field(default=ScheduleEntryStatus.PENDING)
    attempts: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    locked_until: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class StepOutcome(BaseContract):
    """Bookkeeping written together with a handled step"""
    entry_id: str
    entry_status: ScheduleEntryStatus = Field(default=ScheduleEntryStatus.DONE)
    campaign_id: Optional[str] = None
    counters: Dict[str, int] = Field(default_factory=dict)
    last_run: Optional[datetime] = None
    test_id: Optional[str] = None
    variant: Optional[Variant] = None
    variant_counters: Dict[str, int] = Field(default_factory=dict)

    def entry_only(self) -> "StepOutcome":
        """Same entry close, without any counters"""
        return StepOutcome(entry_id=self.entry_id, entry_status=self.entry_status)


# =============================================================================
# A/B TEST MODELS
# =============================================================================

class VariantContent(BaseContract):
    """Alternative content for a step"""
    subject: str = Field(default="", max_length=255)
    content: str = Field(default="")


class VariantStats(BaseContract):
    """Per-variant counters"""
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    converted: int = 0

    @property
    def conversion_rate(self) -> float:
        return self.converted / self.delivered if self.delivered else 0.0


class ABTest(BaseContract):
    """A/B test attached to one campaign step"""
    test_id: str = Field(default_factory=lambda: f"abt_{uuid4().hex[:16]}")
    organization_id: str
    campaign_id: str
    step_id: str
    variant_a: VariantContent
    variant_b: VariantContent
    split_ratio: float = Field(default=0.5, gt=0, lt=1, description="Share of customers receiving A")
    status: ABTestStatus = Field(default=ABTestStatus.RUNNING)
    stats_a: VariantStats = Field(default_factory=VariantStats)
    stats_b: VariantStats = Field(default_factory=VariantStats)
    winner: Optional[Variant] = None
    confidence: Optional[float] = None
    p_value: Optional[float] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def content_for(self, variant: Variant) -> VariantContent:
        return self.variant_a if variant == Variant.A else self.variant_b

    def stats_for(self, variant: Variant) -> VariantStats:
        return self.stats_a if variant == Variant.A else self.stats_b


class WinnerResult(BaseContract):
    """Outcome of a winner evaluation"""
    test_id: str
    winner: Optional[Variant] = None
    confidence: float = 0.0
    p_value: Optional[float] = None
    rate_a: float = 0.0
    rate_b: float = 0.0
    reason: str = ""


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CampaignCreateRequest(BaseContract):
    """Campaign creation request"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    campaign_type: CampaignType = Field(default=CampaignType.EMAIL)
    trigger: CampaignTrigger = Field(default_factory=CampaignTrigger)
    steps: List[CampaignStep] = Field(default_factory=list)
    audience: Audience = Field(default_factory=Audience)


class CampaignUpdateRequest(BaseContract):
    """Campaign update request"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    campaign_type: Optional[CampaignType] = None
    trigger: Optional[CampaignTrigger] = None
    steps: Optional[List[CampaignStep]] = None
    audience: Optional[Audience] = None


class CampaignListResponse(BaseContract):
    """Campaign list response"""
    campaigns: List[Campaign]
    total: int
    limit: int
    offset: int
    has_more: bool


class StartCampaignResponse(BaseContract):
    """Outcome of starting or launching a campaign"""
    campaign: Campaign
    journeys_created: int = 0
    duplicates_skipped: int = 0
    scheduled_launch_at: Optional[datetime] = None


class JourneyStartResponse(BaseContract):
    """Outcome of entering a customer into a sequence"""
    started: bool
    journey: Optional[CustomerJourney] = None
    reason: Optional[str] = None


class CampaignStatsResponse(BaseContract):
    """Campaign stats with derived rates"""
    campaign_id: str
    status: CampaignStatus
    stats: CampaignStats
    conversion_rate: float
    active_journeys: int = 0


class DripCampaignCreateRequest(BaseContract):
    """Drip campaign creation request"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    steps: List[DripStep] = Field(default_factory=list)
    is_active: bool = True


class TriggerDataRequest(BaseContract):
    """Context carried into a new journey"""
    data: Dict[str, Any] = Field(default_factory=dict)


class EngagementRequest(BaseContract):
    """Engagement signal for a delivered step"""
    customer_id: str
    kind: EngagementKind
    step_id: Optional[str] = None
    amount: Optional[Decimal] = Field(None, ge=0, description="Revenue for conversions")

    @field_validator("customer_id", mode="before")
    @classmethod
    def coerce_customer_id(cls, v):
        return str(v)


class ABTestCreateRequest(BaseContract):
    """A/B test creation request"""
    campaign_id: str
    step_id: str
    variant_a: VariantContent
    variant_b: VariantContent
    split_ratio: float = Field(default=0.5, gt=0, lt=1)


class ABTestResponse(BaseContract):
    """A/B test with the latest winner evaluation"""
    test: ABTest
    result: Optional[WinnerResult] = None


# ====================
# Additional Service Models
# ====================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    """Readiness check response"""
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Liveness check response"""
    alive: bool
    uptime_seconds: float


class ErrorResponse(BaseModel):
    """Standard error response"""
    detail: str
    error_code: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


__all__ = [
    "DEFAULT_ORGANIZATION_ID",
    # Enums
    "CampaignType",
    "CampaignStatus",
    "TriggerType",
    "EVENT_TRIGGER_TYPES",
    "StepType",
    "AudienceType",
    "JourneyStatus",
    "TERMINAL_JOURNEY_STATUSES",
    "SequenceKind",
    "ABTestStatus",
    "Variant",
    "ScheduleEntryKind",
    "ScheduleEntryStatus",
    "LIVE_SCHEDULE_STATUSES",
    "EngagementKind",
    # Core Models
    "BaseContract",
    "CampaignTrigger",
    "AudienceFilters",
    "Audience",
    "StepDefinition",
    "CampaignStep",
    "DripStep",
    "CampaignStats",
    "Campaign",
    "DripCampaign",
    "CustomerJourney",
    "ScheduledStep",
    "StepOutcome",
    "VariantContent",
    "VariantStats",
    "ABTest",
    "WinnerResult",
    # Request/Response
    "CampaignCreateRequest",
    "CampaignUpdateRequest",
    "CampaignListResponse",
    "StartCampaignResponse",
    "JourneyStartResponse",
    "CampaignStatsResponse",
    "DripCampaignCreateRequest",
    "TriggerDataRequest",
    "EngagementRequest",
    "ABTestCreateRequest",
    "ABTestResponse",
    # Service Models
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
    "ErrorResponse",
]
