"""
Campaign Service Data Contract

Test data factories for the campaign orchestration engine. Models are the
service's own pydantic models, re-exported here so that every test layer
builds data the same way.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from microservices.campaign_service.models import (
    ABTest,
    ABTestCreateRequest,
    ABTestStatus,
    Audience,
    AudienceFilters,
    AudienceType,
    Campaign,
    CampaignCreateRequest,
    CampaignStats,
    CampaignStatus,
    CampaignStep,
    CampaignTrigger,
    CampaignType,
    CampaignUpdateRequest,
    CustomerJourney,
    DripCampaign,
    DripCampaignCreateRequest,
    DripStep,
    EngagementKind,
    EngagementRequest,
    JourneyStatus,
    ScheduledStep,
    ScheduleEntryKind,
    ScheduleEntryStatus,
    SequenceKind,
    StepType,
    TriggerType,
    Variant,
    VariantContent,
    VariantStats,
)


class CampaignTestDataFactory:
    """Factory for creating campaign engine test data"""

    ORG_ID = "org_test"

    # ====================
    # ID Generators
    # ====================

    @staticmethod
    def make_campaign_id() -> str:
        return f"cmp_{uuid4().hex[:16]}"

    @staticmethod
    def make_drip_id() -> str:
        return f"drp_{uuid4().hex[:16]}"

    @staticmethod
    def make_step_id() -> str:
        return f"stp_{uuid4().hex[:16]}"

    @staticmethod
    def make_customer_id() -> str:
        return f"cus_{uuid4().hex[:12]}"

    @staticmethod
    def make_timestamp(offset_hours: float = 0) -> datetime:
        return datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc) + timedelta(hours=offset_hours)

    # ====================
    # Definitions
    # ====================

    @classmethod
    def make_campaign_step(
        cls,
        order: int = 0,
        delay: float = 0,
        type: StepType = StepType.EMAIL,
        **overrides: Any,
    ) -> CampaignStep:
        defaults = {
            "step_id": f"stp_{order}_{uuid4().hex[:8]}",
            "order": order,
            "type": type,
            "delay": delay,
            "subject": f"Step {order} for {{{{first_name}}}}",
            "content": f"Hello {{{{first_name}}}}, this is step {order}",
        }
        defaults.update(overrides)
        return CampaignStep(**defaults)

    @classmethod
    def make_drip_step(cls, order: int = 0, delay: float = 0, **overrides: Any) -> DripStep:
        defaults = {
            "step_id": f"stp_d{order}_{uuid4().hex[:8]}",
            "order": order,
            "type": StepType.EMAIL,
            "delay": delay,
            "subject": f"Day {delay:g}",
            "content": f"Drip step {order}",
        }
        defaults.update(overrides)
        return DripStep(**defaults)

    @classmethod
    def make_steps(cls, delays: List[float]) -> List[CampaignStep]:
        return [cls.make_campaign_step(order=i, delay=d) for i, d in enumerate(delays)]

    @classmethod
    def make_custom_audience(cls, customer_ids: List[str], **filters: Any) -> Audience:
        return Audience(
            type=AudienceType.CUSTOM,
            customer_ids=customer_ids,
            filters=AudienceFilters(**filters) if filters else None,
        )

    @classmethod
    def make_create_request(
        cls,
        name: str = "Welcome series",
        steps: Optional[List[CampaignStep]] = None,
        trigger: Optional[CampaignTrigger] = None,
        audience: Optional[Audience] = None,
        campaign_type: CampaignType = CampaignType.EMAIL,
    ) -> CampaignCreateRequest:
        return CampaignCreateRequest(
            name=name,
            campaign_type=campaign_type,
            trigger=trigger or CampaignTrigger(type=TriggerType.MANUAL),
            steps=steps if steps is not None else cls.make_steps([0, 24]),
            audience=audience or cls.make_custom_audience(["cus_1", "cus_2"]),
        )

    @classmethod
    def make_campaign(cls, **overrides: Any) -> Campaign:
        defaults = {
            "organization_id": cls.ORG_ID,
            "name": "Test campaign",
            "campaign_type": CampaignType.EMAIL,
            "status": CampaignStatus.DRAFT,
            "trigger": CampaignTrigger(type=TriggerType.MANUAL),
            "steps": cls.make_steps([0, 24]),
            "audience": cls.make_custom_audience(["cus_1"]),
        }
        defaults.update(overrides)
        return Campaign(**defaults)

    @classmethod
    def make_drip_request(
        cls,
        delays: Optional[List[float]] = None,
        is_active: bool = True,
    ) -> DripCampaignCreateRequest:
        delays = delays if delays is not None else [0, 3]
        return DripCampaignCreateRequest(
            name="Onboarding drip",
            steps=[cls.make_drip_step(order=i, delay=d) for i, d in enumerate(delays)],
            is_active=is_active,
        )

    @classmethod
    def make_journey(cls, campaign_id: Optional[str] = None, **overrides: Any) -> CustomerJourney:
        now = cls.make_timestamp()
        defaults = {
            "organization_id": cls.ORG_ID,
            "campaign_id": campaign_id or cls.make_campaign_id(),
            "customer_id": cls.make_customer_id(),
            "started_at": now,
            "last_activity": now,
        }
        defaults.update(overrides)
        return CustomerJourney(**defaults)

    @classmethod
    def make_ab_test(
        cls,
        campaign_id: Optional[str] = None,
        step_id: Optional[str] = None,
        stats_a: Optional[Dict[str, int]] = None,
        stats_b: Optional[Dict[str, int]] = None,
        **overrides: Any,
    ) -> ABTest:
        defaults = {
            "organization_id": cls.ORG_ID,
            "campaign_id": campaign_id or cls.make_campaign_id(),
            "step_id": step_id or cls.make_step_id(),
            "variant_a": VariantContent(subject="Subject A", content="Body A"),
            "variant_b": VariantContent(subject="Subject B", content="Body B"),
            "stats_a": VariantStats(**(stats_a or {})),
            "stats_b": VariantStats(**(stats_b or {})),
        }
        defaults.update(overrides)
        return ABTest(**defaults)

    @classmethod
    def make_ab_test_request(cls, campaign_id: str, step_id: str, split_ratio: float = 0.5) -> ABTestCreateRequest:
        return ABTestCreateRequest(
            campaign_id=campaign_id,
            step_id=step_id,
            variant_a=VariantContent(subject="Subject A", content="Body A"),
            variant_b=VariantContent(subject="Subject B", content="Body B"),
            split_ratio=split_ratio,
        )

    @classmethod
    def make_engagement(
        cls,
        customer_id: str,
        kind: EngagementKind = EngagementKind.OPENED,
        step_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> EngagementRequest:
        return EngagementRequest(customer_id=customer_id, kind=kind, step_id=step_id, amount=amount)


__all__ = [
    # Re-exported models
    "ABTest",
    "ABTestCreateRequest",
    "ABTestStatus",
    "Audience",
    "AudienceFilters",
    "AudienceType",
    "Campaign",
    "CampaignCreateRequest",
    "CampaignStats",
    "CampaignStatus",
    "CampaignStep",
    "CampaignTrigger",
    "CampaignType",
    "CampaignUpdateRequest",
    "CustomerJourney",
    "DripCampaign",
    "DripCampaignCreateRequest",
    "DripStep",
    "EngagementKind",
    "EngagementRequest",
    "JourneyStatus",
    "ScheduledStep",
    "ScheduleEntryKind",
    "ScheduleEntryStatus",
    "SequenceKind",
    "StepType",
    "TriggerType",
    "Variant",
    "VariantContent",
    "VariantStats",
    # Factory
    "CampaignTestDataFactory",
]
