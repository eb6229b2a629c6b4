"""
Component Test Fixtures for Campaign Service

In-memory repository and collaborator fakes, wired into the real state
machine, scheduler and service. Time is driven by a fake clock.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import EngineConfig
from microservices.campaign_service.audience_resolver import AudienceResolver
from microservices.campaign_service.campaign_service import CampaignService
from microservices.campaign_service.events.publishers import CampaignEventPublisher
from microservices.campaign_service.journey_state_machine import JourneyLocks, JourneyStateMachine
from microservices.campaign_service.models import (
    ABTest,
    Campaign,
    CampaignStatus,
    CustomerJourney,
    DripCampaign,
    JourneyStatus,
    LIVE_SCHEDULE_STATUSES,
    ScheduledStep,
    ScheduleEntryKind,
    ScheduleEntryStatus,
    TriggerType,
    Variant,
)
from microservices.campaign_service.protocols import (
    ConcurrentModificationError,
    DuplicateJourneyError,
)
from microservices.campaign_service.step_scheduler import StepScheduler
from microservices.campaign_service.variant_assigner import VariantAssigner
from tests.contracts.campaign.data_contract import CampaignTestDataFactory


T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

LIVE_JOURNEY_STATUSES = {JourneyStatus.ACTIVE, JourneyStatus.PAUSED}


# ====================
# Fake Clock
# ====================


class FakeClock:
    """Callable clock advanced explicitly by tests"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ====================
# In-Memory Repository
# ====================


class InMemoryCampaignRepository:
    """Repository fake with the same semantics as the PostgreSQL one"""

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.drips: Dict[str, DripCampaign] = {}
        self.journeys: Dict[str, CustomerJourney] = {}
        self.entries: Dict[str, ScheduledStep] = {}
        self.ab_tests: Dict[str, ABTest] = {}
        self.fail_outcomes = 0
        self.recovery_pages = 0

    async def initialize(self):
        pass

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return True

    # Campaign registry
    async def save_campaign(self, campaign: Campaign) -> Campaign:
        stored = campaign.model_copy(deep=True)
        existing = self.campaigns.get(campaign.campaign_id)
        if existing:
            stored.stats = existing.stats.model_copy(deep=True)
        self.campaigns[campaign.campaign_id] = stored
        return stored.model_copy(deep=True)

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        return campaign.model_copy(deep=True) if campaign else None

    async def list_campaigns(self, organization_id, status=None, limit=20, offset=0) -> Tuple[List[Campaign], int]:
        matching = [
            c for c in self.campaigns.values()
            if c.organization_id == organization_id and (status is None or c.status == status)
        ]
        matching.sort(key=lambda c: c.created_at, reverse=True)
        page = matching[offset:offset + limit]
        return [c.model_copy(deep=True) for c in page], len(matching)

    async def list_active_campaigns_by_trigger(self, organization_id, trigger_type: TriggerType) -> List[Campaign]:
        return [
            c.model_copy(deep=True) for c in self.campaigns.values()
            if c.status == CampaignStatus.ACTIVE
            and c.trigger.type == trigger_type
            and c.organization_id == organization_id
        ]

    async def increment_campaign_stats(self, campaign_id, increments, revenue=None, last_run=None):
        campaign = self.campaigns.get(campaign_id)
        if not campaign:
            return
        for counter, amount in increments.items():
            setattr(campaign.stats, counter, getattr(campaign.stats, counter) + amount)
        if revenue is not None:
            campaign.stats.revenue += Decimal(revenue)
        if last_run is not None:
            campaign.stats.last_run = last_run

    # Drip campaigns
    async def save_drip_campaign(self, drip: DripCampaign) -> DripCampaign:
        self.drips[drip.drip_id] = drip.model_copy(deep=True)
        return drip.model_copy(deep=True)

    async def get_drip_campaign(self, drip_id: str) -> Optional[DripCampaign]:
        drip = self.drips.get(drip_id)
        return drip.model_copy(deep=True) if drip else None

    # Journeys
    async def create_journey(self, journey: CustomerJourney) -> CustomerJourney:
        for existing in self.journeys.values():
            if (
                existing.campaign_id == journey.campaign_id
                and existing.customer_id == journey.customer_id
                and existing.status in LIVE_JOURNEY_STATUSES
            ):
                raise DuplicateJourneyError("live journey exists", journey_id=existing.journey_id)
        self.journeys[journey.journey_id] = journey.model_copy(deep=True)
        return journey.model_copy(deep=True)

    async def get_journey(self, journey_id: str) -> Optional[CustomerJourney]:
        journey = self.journeys.get(journey_id)
        return journey.model_copy(deep=True) if journey else None

    async def get_journey_for_customer(self, campaign_id, customer_id) -> Optional[CustomerJourney]:
        candidates = [
            j for j in self.journeys.values()
            if j.campaign_id == campaign_id and j.customer_id == customer_id
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda j: (j.status in LIVE_JOURNEY_STATUSES, j.started_at), reverse=True)
        return candidates[0].model_copy(deep=True)

    async def update_journey(self, journey: CustomerJourney, expected_version: int) -> CustomerJourney:
        stored = self.journeys.get(journey.journey_id)
        if not stored or stored.version != expected_version:
            raise ConcurrentModificationError(f"Journey {journey.journey_id} changed")
        self.journeys[journey.journey_id] = journey.model_copy(deep=True)
        return journey.model_copy(deep=True)

    async def count_live_journeys(self, campaign_id: str) -> int:
        return sum(
            1 for j in self.journeys.values()
            if j.campaign_id == campaign_id and j.status in LIVE_JOURNEY_STATUSES
        )

    async def list_live_journeys_for_customer(self, customer_id, organization_id=None) -> List[CustomerJourney]:
        return [
            j.model_copy(deep=True) for j in self.journeys.values()
            if j.customer_id == customer_id
            and j.status in LIVE_JOURNEY_STATUSES
            and (organization_id is None or j.organization_id == organization_id)
        ]

    async def list_unscheduled_active_journeys(self, limit: int = 500, after=None) -> List[CustomerJourney]:
        scheduled = {
            e.journey_id for e in self.entries.values()
            if e.journey_id and e.status in LIVE_SCHEDULE_STATUSES
        }
        completed = {
            c.campaign_id for c in self.campaigns.values() if c.status == CampaignStatus.COMPLETED
        }
        result = [
            j for j in self.journeys.values()
            if j.status == JourneyStatus.ACTIVE
            and j.journey_id not in scheduled
            and j.campaign_id not in completed
            and (after is None or (j.last_activity, j.journey_id) > after)
        ]
        result.sort(key=lambda j: (j.last_activity, j.journey_id))
        self.recovery_pages += 1
        return [j.model_copy(deep=True) for j in result[:limit]]

    # Durable schedule
    async def create_schedule_entry(self, entry: ScheduledStep) -> Optional[ScheduledStep]:
        for existing in self.entries.values():
            if existing.status not in LIVE_SCHEDULE_STATUSES:
                continue
            if entry.kind == ScheduleEntryKind.STEP and existing.kind == ScheduleEntryKind.STEP:
                if existing.journey_id == entry.journey_id and existing.step_index == entry.step_index:
                    return None
            if entry.kind == ScheduleEntryKind.LAUNCH and existing.kind == ScheduleEntryKind.LAUNCH:
                if existing.campaign_id == entry.campaign_id:
                    return None
        self.entries[entry.entry_id] = entry.model_copy(deep=True)
        return entry.model_copy(deep=True)

    async def claim_due_entries(self, now: datetime, limit: int, lease_seconds: int) -> List[ScheduledStep]:
        due = [
            e for e in self.entries.values()
            if (e.status == ScheduleEntryStatus.PENDING and e.fire_at <= now)
            or (e.status == ScheduleEntryStatus.PROCESSING and e.locked_until and e.locked_until < now)
        ]
        due.sort(key=lambda e: e.fire_at)
        claimed = []
        for entry in due[:limit]:
            entry.status = ScheduleEntryStatus.PROCESSING
            entry.locked_until = now + timedelta(seconds=lease_seconds)
            claimed.append(entry.model_copy(deep=True))
        return claimed

    async def update_schedule_entry_status(self, entry_id, status, last_error=None, attempts=None):
        entry = self.entries[entry_id]
        entry.status = status
        entry.locked_until = None
        if last_error is not None:
            entry.last_error = last_error
        if attempts is not None:
            entry.attempts = attempts

    async def reschedule_entry(self, entry_id, fire_at, last_error=None, attempts=None):
        entry = self.entries[entry_id]
        entry.status = ScheduleEntryStatus.PENDING
        entry.fire_at = fire_at
        entry.locked_until = None
        entry.last_error = last_error
        if attempts is not None:
            entry.attempts = attempts

    async def record_step_outcome(self, outcome, journey=None, expected_version=None):
        # All or nothing, like the database transaction
        if self.fail_outcomes:
            self.fail_outcomes -= 1
            raise ConnectionError("database unavailable")
        if journey is not None:
            stored = self.journeys.get(journey.journey_id)
            if not stored or stored.version != expected_version:
                raise ConcurrentModificationError(f"Journey {journey.journey_id} changed")
            self.journeys[journey.journey_id] = journey.model_copy(deep=True)
        if outcome.campaign_id:
            await self.increment_campaign_stats(
                outcome.campaign_id, outcome.counters, last_run=outcome.last_run
            )
        if outcome.test_id and outcome.variant:
            await self.increment_variant_stats(outcome.test_id, outcome.variant, outcome.variant_counters)
        await self.update_schedule_entry_status(outcome.entry_id, outcome.entry_status)
        return journey.model_copy(deep=True) if journey is not None else None

    async def release_held_entries(self, campaign_id: str, fire_at: datetime) -> int:
        released = 0
        for entry in self.entries.values():
            if entry.campaign_id == campaign_id and entry.status == ScheduleEntryStatus.HELD:
                entry.status = ScheduleEntryStatus.PENDING
                entry.fire_at = fire_at
                released += 1
        return released

    async def cancel_journey_entries(self, journey_id: str) -> int:
        return self._cancel(lambda e: e.journey_id == journey_id)

    async def cancel_campaign_entries(self, campaign_id: str) -> int:
        return self._cancel(lambda e: e.campaign_id == campaign_id)

    def _cancel(self, predicate) -> int:
        cancelled = 0
        for entry in self.entries.values():
            if predicate(entry) and entry.status in (ScheduleEntryStatus.PENDING, ScheduleEntryStatus.HELD):
                entry.status = ScheduleEntryStatus.CANCELLED
                cancelled += 1
        return cancelled

    async def get_live_entry(self, journey_id: str) -> Optional[ScheduledStep]:
        for entry in self.entries.values():
            if entry.journey_id == journey_id and entry.status in LIVE_SCHEDULE_STATUSES:
                return entry.model_copy(deep=True)
        return None

    # A/B tests
    async def save_ab_test(self, test: ABTest) -> ABTest:
        stored = test.model_copy(deep=True)
        existing = self.ab_tests.get(test.test_id)
        if existing:
            stored.stats_a = existing.stats_a.model_copy(deep=True)
            stored.stats_b = existing.stats_b.model_copy(deep=True)
        self.ab_tests[test.test_id] = stored
        return stored.model_copy(deep=True)

    async def get_ab_test(self, test_id: str) -> Optional[ABTest]:
        test = self.ab_tests.get(test_id)
        return test.model_copy(deep=True) if test else None

    async def get_ab_test_for_step(self, campaign_id: str, step_id: str) -> Optional[ABTest]:
        for test in self.ab_tests.values():
            if test.campaign_id == campaign_id and test.step_id == step_id:
                return test.model_copy(deep=True)
        return None

    async def increment_variant_stats(self, test_id: str, variant: Variant, increments: Dict[str, int]):
        stats = self.ab_tests[test_id].stats_for(variant)
        for counter, amount in increments.items():
            setattr(stats, counter, getattr(stats, counter) + amount)

    # Test helpers
    def entries_for(self, journey_id: str) -> List[ScheduledStep]:
        return [e for e in self.entries.values() if e.journey_id == journey_id]

    def live_entries(self) -> List[ScheduledStep]:
        return [e for e in self.entries.values() if e.status in LIVE_SCHEDULE_STATUSES]


# ====================
# Collaborator Fakes
# ====================


class FakeEmailChannel:
    """Records accepted sends; can fail a number of times or forever"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.attempts = 0
        self.fail_times = 0
        self.always_fail = False
        self.reject = False
        # Awaited after each accepted send
        self.on_send = None

    async def send(self, to_address, subject, body, variables=None, idempotency_key=None) -> bool:
        self.attempts += 1
        if self.always_fail or self.fail_times > 0:
            self.fail_times = max(self.fail_times - 1, 0)
            raise ConnectionError("email provider unavailable")
        if self.reject:
            return False
        self.sent.append({
            "to": to_address,
            "subject": subject,
            "body": body,
            "idempotency_key": idempotency_key,
        })
        if self.on_send:
            await self.on_send()
        return True


class FakeMessageChannel:

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, customer_id, subject, body, idempotency_key=None) -> bool:
        self.sent.append({
            "customer_id": customer_id,
            "subject": subject,
            "body": body,
            "idempotency_key": idempotency_key,
        })
        return True


class FakeCustomerStore:
    """Customer store with configurable segments and contacts"""

    def __init__(self):
        self.customers: List[str] = []
        self.segments: Dict[str, List[str]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.fail = False
        # Awaited on each contact lookup
        self.on_contact = None

    def _check(self):
        if self.fail:
            raise ConnectionError("customer store unavailable")

    async def resolve_segment(self, segment_id, filters=None) -> List[str]:
        self._check()
        return list(self.segments.get(segment_id, []))

    async def list_customers(self, organization_id, filters=None) -> List[str]:
        self._check()
        return list(self.customers)

    async def filter_customers(self, customer_ids, filters) -> List[str]:
        self._check()
        return list(customer_ids)

    async def get_contact(self, customer_id) -> Dict[str, Any]:
        self._check()
        if self.on_contact:
            await self.on_contact()
        return self.contacts.get(customer_id, {"email": f"{customer_id}@example.com"})


class FakeEventBus:
    """Captures published events"""

    def __init__(self):
        self.events = []

    async def publish_event(self, event) -> bool:
        self.events.append(event)
        return True

    def types(self) -> List[str]:
        return [e.type for e in self.events]

    def of_type(self, event_type: str):
        return [e for e in self.events if e.type == event_type]


# ====================
# Engine Wiring
# ====================


def build_engine(config: Optional[EngineConfig] = None) -> SimpleNamespace:
    """Wire the real engine components around in-memory fakes"""
    clock = FakeClock()
    repository = InMemoryCampaignRepository()
    email = FakeEmailChannel()
    message = FakeMessageChannel()
    store = FakeCustomerStore()
    bus = FakeEventBus()
    publisher = CampaignEventPublisher(bus)
    config = config or EngineConfig(
        max_dispatch_attempts=3,
        retry_base_seconds=60,
        retry_max_seconds=3600,
        ab_min_sample_size=100,
    )

    locks = JourneyLocks()
    state_machine = JourneyStateMachine(repository, clock=clock)
    assigner = VariantAssigner(
        repository=repository,
        min_sample_size=config.ab_min_sample_size,
        significance_level=config.ab_significance_level,
    )
    scheduler = StepScheduler(
        repository=repository,
        state_machine=state_machine,
        locks=locks,
        variant_assigner=assigner,
        email_channel=email,
        message_channel=message,
        customer_store=store,
        publisher=publisher,
        config=config,
        clock=clock,
    )
    service = CampaignService(
        repository=repository,
        state_machine=state_machine,
        scheduler=scheduler,
        audience_resolver=AudienceResolver(store),
        variant_assigner=assigner,
        locks=locks,
        publisher=publisher,
        clock=clock,
    )

    async def tick() -> int:
        """Fire everything due at the current fake time"""
        total = 0
        while True:
            processed = await scheduler.run_due()
            if not processed:
                return total
            total += processed

    async def advance(**kwargs) -> int:
        clock.advance(**kwargs)
        return await tick()

    return SimpleNamespace(
        clock=clock,
        repository=repository,
        email=email,
        message=message,
        store=store,
        bus=bus,
        publisher=publisher,
        config=config,
        locks=locks,
        state_machine=state_machine,
        assigner=assigner,
        scheduler=scheduler,
        service=service,
        tick=tick,
        advance=advance,
    )


@pytest.fixture
def engine() -> SimpleNamespace:
    """Engine wired around in-memory fakes"""
    return build_engine()


@pytest.fixture
def factory():
    """Provide test data factory"""
    return CampaignTestDataFactory


@pytest.fixture
def start_manual_campaign(engine, factory):
    """Create and start a manual campaign; returns (campaign, start response)"""

    async def _start(delays=None, customer_ids=None, **request_overrides):
        request = factory.make_create_request(
            steps=factory.make_steps(delays if delays is not None else [0, 24]),
            audience=factory.make_custom_audience(customer_ids or ["cus_1"]),
            **request_overrides,
        )
        campaign = await engine.service.create_campaign(request, "org_test", "usr_test")
        response = await engine.service.start_campaign(campaign.campaign_id)
        return response.campaign, response

    return _start
