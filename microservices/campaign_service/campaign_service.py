"""
Campaign Service Business Logic

Control surface of the orchestration engine: campaign and drip registry,
campaign lifecycle, journey entry and control, engagement statistics and
A/B tests. Step execution itself belongs to the StepScheduler.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .audience_resolver import AudienceResolver
from .conditions import matches
from .events.models import CampaignEventType
from .journey_state_machine import JourneyLocks, JourneyStateMachine, utcnow
from .models import (
    DEFAULT_ORGANIZATION_ID,
    ABTest,
    ABTestCreateRequest,
    ABTestResponse,
    ABTestStatus,
    Campaign,
    CampaignCreateRequest,
    CampaignListResponse,
    CampaignStatsResponse,
    CampaignStatus,
    CampaignStep,
    CampaignTrigger,
    CampaignType,
    CampaignUpdateRequest,
    CustomerJourney,
    DripCampaign,
    DripCampaignCreateRequest,
    EngagementKind,
    EngagementRequest,
    JourneyStartResponse,
    SequenceKind,
    StartCampaignResponse,
    StepType,
    TriggerType,
)
from .protocols import (
    ABTestNotFoundError,
    CampaignNotFoundError,
    CampaignRepositoryProtocol,
    CampaignValidationError,
    DripCampaignNotFoundError,
    DuplicateJourneyError,
    InvalidTransitionError,
    JourneyNotFoundError,
)
from .step_scheduler import StepScheduler
from .variant_assigner import VariantAssigner

logger = logging.getLogger(__name__)


# Engagement kind -> campaign counter
ENGAGEMENT_COUNTERS = {
    EngagementKind.OPENED: "total_opened",
    EngagementKind.CLICKED: "total_clicked",
    EngagementKind.REPLIED: "total_replied",
    EngagementKind.CONVERTED: "total_converted",
}

# Engagement kind -> variant counter; replies are not tracked per variant
VARIANT_ENGAGEMENT_COUNTERS = {
    EngagementKind.OPENED: "opened",
    EngagementKind.CLICKED: "clicked",
    EngagementKind.CONVERTED: "converted",
}


class CampaignService:
    """Campaign service business logic layer"""

    # Valid state transitions
    VALID_TRANSITIONS = {
        CampaignStatus.DRAFT: [CampaignStatus.ACTIVE],
        CampaignStatus.ACTIVE: [CampaignStatus.PAUSED, CampaignStatus.COMPLETED],
        CampaignStatus.PAUSED: [CampaignStatus.ACTIVE, CampaignStatus.COMPLETED],
        CampaignStatus.COMPLETED: [],  # Terminal state
    }

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        state_machine: JourneyStateMachine,
        scheduler: StepScheduler,
        audience_resolver: AudienceResolver,
        variant_assigner: VariantAssigner,
        locks: JourneyLocks,
        publisher=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.scheduler = scheduler
        self.audience_resolver = audience_resolver
        self.variant_assigner = variant_assigner
        self.locks = locks
        self.publisher = publisher
        self.clock = clock or utcnow

        self.scheduler.set_launch_handler(self.launch_campaign)

    # ====================
    # Campaign Registry
    # ====================

    async def create_campaign(
        self,
        request: CampaignCreateRequest,
        organization_id: str,
        created_by: Optional[str] = None,
    ) -> Campaign:
        """
        Create a campaign in draft status.

        Raises:
            CampaignValidationError: no steps, a date trigger without a date,
                or steps whose channel the campaign type does not allow
        """
        self._validate_definition(request.campaign_type, request.trigger, request.steps)

        now = self.clock()
        try:
            campaign = Campaign(
                organization_id=organization_id,
                name=request.name,
                description=request.description,
                campaign_type=request.campaign_type,
                status=CampaignStatus.DRAFT,
                trigger=request.trigger,
                steps=request.steps,
                audience=request.audience,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise CampaignValidationError(str(e), field="steps")

        campaign = await self.repository.save_campaign(campaign)
        await self._publish_campaign(CampaignEventType.CREATED, campaign)

        logger.info(f"Campaign created: {campaign.campaign_id} ({len(campaign.steps)} steps)")
        return campaign

    async def get_campaign(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
    ) -> Campaign:
        """Get campaign by ID, scoped to a tenant when one is given"""
        campaign = await self.repository.get_campaign(campaign_id)
        if not campaign or (organization_id and campaign.organization_id != organization_id):
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[CampaignStatus] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> CampaignListResponse:
        """List campaigns for a tenant"""
        campaigns, total = await self.repository.list_campaigns(
            organization_id, status=status, limit=limit, offset=offset
        )
        return CampaignListResponse(
            campaigns=campaigns,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(campaigns) < total,
        )

    async def update_campaign(
        self,
        campaign_id: str,
        request: CampaignUpdateRequest,
        organization_id: Optional[str] = None,
    ) -> Campaign:
        """
        Edit a campaign definition.

        Allowed in draft, or while paused with no live journeys: editing
        steps under running journeys would shift their step indexes.
        """
        campaign = await self.get_campaign(campaign_id, organization_id)

        if campaign.status == CampaignStatus.PAUSED:
            live = await self.repository.count_live_journeys(campaign_id)
            if live:
                raise InvalidTransitionError(
                    f"Campaign {campaign_id} has {live} live journeys and cannot be edited",
                    current_status=campaign.status,
                )
        elif campaign.status != CampaignStatus.DRAFT:
            raise InvalidTransitionError(
                f"Cannot edit campaign in {campaign.status.value} status",
                current_status=campaign.status,
            )

        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return campaign

        campaign_type = request.campaign_type or campaign.campaign_type
        trigger = request.trigger or campaign.trigger
        steps = request.steps if request.steps is not None else campaign.steps
        self._validate_definition(campaign_type, trigger, steps)

        merged = campaign.model_dump()
        merged.update(changes)
        merged["updated_at"] = self.clock()
        try:
            updated = Campaign.model_validate(merged)
        except ValidationError as e:
            raise CampaignValidationError(str(e))

        updated = await self.repository.save_campaign(updated)
        logger.info(f"Campaign updated: {campaign_id} ({', '.join(sorted(changes))})")
        return updated

    # ====================
    # Campaign Lifecycle
    # ====================

    async def start_campaign(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
    ) -> StartCampaignResponse:
        """
        Activate a campaign.

        From draft: manual campaigns (and date campaigns whose date has
        passed) resolve their audience and start one journey per customer;
        future date campaigns get a durable launch entry; event-triggered
        campaigns only begin listening. From paused: held step entries are
        released.

        Raises:
            AudienceResolutionError: nothing is activated and no journey exists
        """
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._check_transition(campaign, CampaignStatus.ACTIVE)
        now = self.clock()

        if campaign.status == CampaignStatus.PAUSED:
            campaign.status = CampaignStatus.ACTIVE
            campaign.paused_at = None
            campaign.updated_at = now
            campaign = await self.repository.save_campaign(campaign)
            released = await self.repository.release_held_entries(campaign_id, now)
            logger.info(f"Campaign resumed: {campaign_id} ({released} held steps released)")
            await self._publish_campaign(CampaignEventType.STARTED, campaign)
            return StartCampaignResponse(campaign=campaign)

        trigger = campaign.trigger
        if trigger.type == TriggerType.DATE and trigger.scheduled_date and trigger.scheduled_date > now:
            campaign = await self._activate(campaign, now)
            await self.scheduler.schedule_launch(campaign, trigger.scheduled_date)
            await self._publish_campaign(
                CampaignEventType.STARTED, campaign, scheduled_launch_at=trigger.scheduled_date
            )
            return StartCampaignResponse(campaign=campaign, scheduled_launch_at=trigger.scheduled_date)

        if trigger.type in (TriggerType.MANUAL, TriggerType.DATE):
            customer_ids = await self.audience_resolver.resolve(campaign.audience, campaign.organization_id)
            campaign = await self._activate(campaign, now)
            created, duplicates = await self._create_journeys(campaign, customer_ids)
            await self._publish_campaign(CampaignEventType.STARTED, campaign, journeys_created=created)
            return StartCampaignResponse(
                campaign=campaign, journeys_created=created, duplicates_skipped=duplicates
            )

        campaign = await self._activate(campaign, now)
        logger.info(f"Campaign {campaign_id} listening for {trigger.type.value} events")
        await self._publish_campaign(CampaignEventType.STARTED, campaign)
        return StartCampaignResponse(campaign=campaign)

    async def launch_campaign(self, campaign_id: str) -> StartCampaignResponse:
        """Resolve the audience of an active campaign and start its journeys"""
        campaign = await self.get_campaign(campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot launch campaign in {campaign.status.value} status",
                current_status=campaign.status,
            )

        customer_ids = await self.audience_resolver.resolve(campaign.audience, campaign.organization_id)
        created, duplicates = await self._create_journeys(campaign, customer_ids)
        logger.info(f"Campaign launched: {campaign_id} ({created} journeys, {duplicates} duplicates)")
        return StartCampaignResponse(
            campaign=campaign, journeys_created=created, duplicates_skipped=duplicates
        )

    async def pause_campaign(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
    ) -> Campaign:
        """Pause a campaign; due steps are held until it resumes"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._check_transition(campaign, CampaignStatus.PAUSED)

        now = self.clock()
        campaign.status = CampaignStatus.PAUSED
        campaign.paused_at = now
        campaign.updated_at = now
        campaign = await self.repository.save_campaign(campaign)

        await self._publish_campaign(CampaignEventType.PAUSED, campaign)
        logger.info(f"Campaign paused: {campaign_id}")
        return campaign

    async def complete_campaign(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
    ) -> Campaign:
        """Close a campaign and cancel all of its pending work"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._check_transition(campaign, CampaignStatus.COMPLETED)

        now = self.clock()
        campaign.status = CampaignStatus.COMPLETED
        campaign.completed_at = now
        campaign.updated_at = now
        campaign = await self.repository.save_campaign(campaign)

        cancelled = await self.repository.cancel_campaign_entries(campaign_id)
        await self._publish_campaign(CampaignEventType.COMPLETED, campaign)
        logger.info(f"Campaign completed: {campaign_id} ({cancelled} pending entries cancelled)")
        return campaign

    # ====================
    # Journey Entry
    # ====================

    async def execute_campaign_for_customer(
        self,
        campaign_id: str,
        customer_id: str,
        trigger_data: Optional[Dict[str, Any]] = None,
        organization_id: Optional[str] = None,
    ) -> JourneyStartResponse:
        """
        Enter one customer into an active campaign.

        Raises:
            InvalidTransitionError: campaign is not active
            DuplicateJourneyError: customer already has a live journey
        """
        campaign = await self.get_campaign(campaign_id, organization_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Campaign {campaign_id} is {campaign.status.value}, not active",
                current_status=campaign.status,
            )

        trigger_data = trigger_data or {}
        if not matches(campaign.trigger.conditions, trigger_data):
            logger.debug(f"Trigger conditions of {campaign_id} not met for {customer_id}")
            return JourneyStartResponse(started=False, reason="trigger_conditions_not_met")

        journey = await self._enter(campaign, str(customer_id), trigger_data, SequenceKind.CAMPAIGN)
        return JourneyStartResponse(started=True, journey=journey)

    async def trigger_campaigns(
        self,
        trigger_type: TriggerType,
        customer_id: str,
        data: Optional[Dict[str, Any]] = None,
        organization_id: str = DEFAULT_ORGANIZATION_ID,
    ) -> List[CustomerJourney]:
        """Start journeys in every active campaign listening for a trigger"""
        data = data or {}
        campaigns = await self.repository.list_active_campaigns_by_trigger(organization_id, trigger_type)

        journeys = []
        for campaign in campaigns:
            if not matches(campaign.trigger.conditions, data):
                continue
            try:
                journey = await self._enter(campaign, str(customer_id), data, SequenceKind.CAMPAIGN)
                journeys.append(journey)
            except DuplicateJourneyError:
                logger.debug(f"Customer {customer_id} already in campaign {campaign.campaign_id}")

        if journeys:
            logger.info(
                f"Trigger {trigger_type.value} for {customer_id} started {len(journeys)} journeys"
            )
        return journeys

    # ====================
    # Journey Control
    # ====================

    async def get_journey(self, campaign_id: str, customer_id: str) -> CustomerJourney:
        """Current (or most recent) journey of a customer in a sequence"""
        journey = await self.repository.get_journey_for_customer(campaign_id, str(customer_id))
        if not journey:
            raise JourneyNotFoundError(f"No journey for customer {customer_id} in {campaign_id}")
        return journey

    async def pause_journey(self, campaign_id: str, customer_id: str) -> CustomerJourney:
        journey = await self.get_journey(campaign_id, customer_id)
        async with self.locks.hold(journey.journey_id):
            journey = await self.state_machine.pause(journey.journey_id)
        await self._publish_journey("publish_journey_paused", journey)
        return journey

    async def resume_journey(self, campaign_id: str, customer_id: str) -> CustomerJourney:
        """Resume a paused journey; an overdue step fires immediately"""
        journey = await self.get_journey(campaign_id, customer_id)
        async with self.locks.hold(journey.journey_id):
            journey = await self.state_machine.resume(journey.journey_id)
            await self.scheduler.schedule_current_step(journey, not_before=self.clock())
        await self._publish_journey("publish_journey_resumed", journey)
        return journey

    async def unsubscribe_journey(self, campaign_id: str, customer_id: str) -> CustomerJourney:
        journey = await self.get_journey(campaign_id, customer_id)
        async with self.locks.hold(journey.journey_id):
            journey = await self.state_machine.unsubscribe(journey.journey_id)
        await self._publish_journey("publish_journey_unsubscribed", journey)
        return journey

    async def unsubscribe_customer(
        self,
        customer_id: str,
        organization_id: Optional[str] = None,
    ) -> List[CustomerJourney]:
        """Unsubscribe a customer from every live journey"""
        journeys = await self.repository.list_live_journeys_for_customer(str(customer_id), organization_id)

        result = []
        for journey in journeys:
            async with self.locks.hold(journey.journey_id):
                journey = await self.state_machine.unsubscribe(journey.journey_id)
            await self._publish_journey("publish_journey_unsubscribed", journey)
            result.append(journey)

        logger.info(f"Customer {customer_id} unsubscribed from {len(result)} journeys")
        return result

    # ====================
    # Statistics & Engagement
    # ====================

    async def get_campaign_stats(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
    ) -> CampaignStatsResponse:
        campaign = await self.get_campaign(campaign_id, organization_id)
        live = await self.repository.count_live_journeys(campaign_id)
        return CampaignStatsResponse(
            campaign_id=campaign_id,
            status=campaign.status,
            stats=campaign.stats,
            conversion_rate=campaign.stats.conversion_rate,
            active_journeys=live,
        )

    async def record_engagement(
        self,
        campaign_id: str,
        request: EngagementRequest,
        organization_id: Optional[str] = None,
    ) -> CampaignStatsResponse:
        """
        Record an engagement signal against campaign counters.

        When the step carries a running A/B test the customer's variant is
        re-derived and that variant's counter moves too.
        """
        campaign = await self.get_campaign(campaign_id, organization_id)

        revenue = request.amount if request.kind == EngagementKind.CONVERTED else None
        await self.repository.increment_campaign_stats(
            campaign_id, {ENGAGEMENT_COUNTERS[request.kind]: 1}, revenue=revenue
        )

        counter = VARIANT_ENGAGEMENT_COUNTERS.get(request.kind)
        if request.step_id and counter:
            test = await self.repository.get_ab_test_for_step(campaign_id, request.step_id)
            if test and test.status == ABTestStatus.RUNNING:
                variant = self.variant_assigner.assign(test.test_id, request.customer_id, test.split_ratio)
                await self.repository.increment_variant_stats(test.test_id, variant, {counter: 1})

        logger.debug(f"Engagement {request.kind.value} recorded for {campaign.campaign_id}")
        return await self.get_campaign_stats(campaign_id, organization_id)

    # ====================
    # Drip Campaigns
    # ====================

    async def create_drip_campaign(
        self,
        request: DripCampaignCreateRequest,
        organization_id: str,
        created_by: Optional[str] = None,
    ) -> DripCampaign:
        if not request.steps:
            raise CampaignValidationError("Drip campaign requires at least one step", field="steps")

        now = self.clock()
        try:
            drip = DripCampaign(
                organization_id=organization_id,
                name=request.name,
                description=request.description,
                steps=request.steps,
                is_active=request.is_active,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise CampaignValidationError(str(e), field="steps")

        drip = await self.repository.save_drip_campaign(drip)
        logger.info(f"Drip campaign created: {drip.drip_id} ({len(drip.steps)} steps)")
        return drip

    async def get_drip_campaign(
        self,
        drip_id: str,
        organization_id: Optional[str] = None,
    ) -> DripCampaign:
        drip = await self.repository.get_drip_campaign(drip_id)
        if not drip or (organization_id and drip.organization_id != organization_id):
            raise DripCampaignNotFoundError(f"Drip campaign not found: {drip_id}")
        return drip

    async def activate_drip_campaign(
        self,
        drip_id: str,
        organization_id: Optional[str] = None,
    ) -> DripCampaign:
        """Reactivate a drip; steps held while inactive become due"""
        drip = await self.get_drip_campaign(drip_id, organization_id)
        if drip.is_active:
            return drip

        now = self.clock()
        drip.is_active = True
        drip.updated_at = now
        drip = await self.repository.save_drip_campaign(drip)
        released = await self.repository.release_held_entries(drip_id, now)
        logger.info(f"Drip campaign activated: {drip_id} ({released} held steps released)")
        return drip

    async def deactivate_drip_campaign(
        self,
        drip_id: str,
        organization_id: Optional[str] = None,
    ) -> DripCampaign:
        """Stop new entries; due steps are held until reactivation"""
        drip = await self.get_drip_campaign(drip_id, organization_id)
        if not drip.is_active:
            return drip

        drip.is_active = False
        drip.updated_at = self.clock()
        drip = await self.repository.save_drip_campaign(drip)
        logger.info(f"Drip campaign deactivated: {drip_id}")
        return drip

    async def start_drip_campaign(
        self,
        drip_id: str,
        customer_id: str,
        data: Optional[Dict[str, Any]] = None,
        organization_id: Optional[str] = None,
    ) -> CustomerJourney:
        """Enter one customer into a drip sequence"""
        drip = await self.get_drip_campaign(drip_id, organization_id)
        if not drip.is_active:
            raise InvalidTransitionError(f"Drip campaign {drip_id} is not active")
        return await self._enter(drip, str(customer_id), data or {}, SequenceKind.DRIP)

    # ====================
    # A/B Tests
    # ====================

    async def create_ab_test(
        self,
        request: ABTestCreateRequest,
        organization_id: Optional[str] = None,
    ) -> ABTest:
        """Attach an A/B test to one campaign step"""
        campaign = await self.get_campaign(request.campaign_id, organization_id)
        if campaign.step_index(request.step_id) is None:
            raise CampaignValidationError(
                f"Step {request.step_id} is not part of campaign {campaign.campaign_id}",
                field="step_id",
            )

        existing = await self.repository.get_ab_test_for_step(campaign.campaign_id, request.step_id)
        if existing:
            raise CampaignValidationError(
                f"Step {request.step_id} already has A/B test {existing.test_id}",
                field="step_id",
            )

        test = ABTest(
            organization_id=campaign.organization_id,
            campaign_id=campaign.campaign_id,
            step_id=request.step_id,
            variant_a=request.variant_a,
            variant_b=request.variant_b,
            split_ratio=request.split_ratio,
            created_at=self.clock(),
        )
        test = await self.repository.save_ab_test(test)
        logger.info(f"A/B test created: {test.test_id} on {campaign.campaign_id}/{request.step_id}")
        return test

    async def get_ab_test(
        self,
        test_id: str,
        organization_id: Optional[str] = None,
    ) -> ABTestResponse:
        """A/B test with a live winner evaluation"""
        test = await self._load_ab_test(test_id, organization_id)
        return ABTestResponse(test=test, result=self.variant_assigner.evaluate(test))

    async def complete_ab_test(
        self,
        test_id: str,
        organization_id: Optional[str] = None,
    ) -> ABTestResponse:
        """Stop a test and declare its winner when significant"""
        test = await self._load_ab_test(test_id, organization_id)
        if test.status != ABTestStatus.RUNNING:
            raise InvalidTransitionError(
                f"A/B test {test_id} is already completed", current_status=test.status
            )

        test.status = ABTestStatus.COMPLETED
        test.completed_at = self.clock()
        await self.repository.save_ab_test(test)

        result = await self.variant_assigner.declare_winner(test_id)
        test = await self._load_ab_test(test_id, organization_id)
        if self.publisher:
            await self.publisher.publish_ab_test_completed(test, result)
        return ABTestResponse(test=test, result=result)

    # ====================
    # Helpers
    # ====================

    def _check_transition(self, campaign: Campaign, target: CampaignStatus) -> None:
        if target not in self.VALID_TRANSITIONS.get(campaign.status, []):
            raise InvalidTransitionError(
                f"Cannot move campaign {campaign.campaign_id} from {campaign.status.value} to {target.value}",
                current_status=campaign.status,
            )

    @staticmethod
    def _validate_definition(
        campaign_type: CampaignType,
        trigger: CampaignTrigger,
        steps: List[CampaignStep],
    ) -> None:
        if not steps:
            raise CampaignValidationError("Campaign requires at least one step", field="steps")

        if trigger.type == TriggerType.DATE and not trigger.scheduled_date:
            raise CampaignValidationError(
                "Date-triggered campaigns require scheduled_date", field="trigger.scheduled_date"
            )

        allowed = {
            CampaignType.EMAIL: {StepType.EMAIL},
            CampaignType.MESSAGE: {StepType.MESSAGE},
            CampaignType.MIXED: {StepType.EMAIL, StepType.MESSAGE},
        }[campaign_type]
        for step in steps:
            if step.type not in allowed:
                raise CampaignValidationError(
                    f"{campaign_type.value} campaigns cannot contain {step.type.value} steps",
                    field="steps",
                )

    async def _activate(self, campaign: Campaign, now: datetime) -> Campaign:
        campaign.status = CampaignStatus.ACTIVE
        campaign.started_at = campaign.started_at or now
        campaign.updated_at = now
        campaign = await self.repository.save_campaign(campaign)
        logger.info(f"Campaign activated: {campaign.campaign_id}")
        return campaign

    async def _create_journeys(
        self, campaign: Campaign, customer_ids: List[str]
    ) -> Tuple[int, int]:
        created = duplicates = 0
        for customer_id in customer_ids:
            try:
                await self._enter(campaign, customer_id, {}, SequenceKind.CAMPAIGN)
                created += 1
            except DuplicateJourneyError:
                duplicates += 1
        return created, duplicates

    async def _enter(self, sequence, customer_id: str, data: Dict[str, Any], kind: SequenceKind) -> CustomerJourney:
        """Start a journey and schedule its first step"""
        sequence_id = sequence.drip_id if kind == SequenceKind.DRIP else sequence.campaign_id
        journey = await self.state_machine.start(
            sequence_id,
            customer_id,
            sequence.organization_id,
            trigger_data=data,
            sequence_kind=kind,
        )
        async with self.locks.hold(journey.journey_id):
            await self.scheduler.schedule_current_step(journey, sequence)
        await self._publish_journey("publish_journey_started", journey)
        return journey

    async def _load_ab_test(self, test_id: str, organization_id: Optional[str]) -> ABTest:
        test = await self.repository.get_ab_test(test_id)
        if not test or (organization_id and test.organization_id != organization_id):
            raise ABTestNotFoundError(f"A/B test not found: {test_id}")
        return test

    async def _publish_campaign(self, event_type: CampaignEventType, campaign: Campaign, **details) -> None:
        if self.publisher:
            await self.publisher.publish_campaign_event(event_type, campaign, **details)

    async def _publish_journey(self, method: str, journey: CustomerJourney) -> None:
        if self.publisher:
            await getattr(self.publisher, method)(journey)


__all__ = ["CampaignService", "ENGAGEMENT_COUNTERS", "VARIANT_ENGAGEMENT_COUNTERS"]
