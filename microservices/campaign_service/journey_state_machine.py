"""
Journey State Machine

Persistent per-(campaign, customer) execution record.

States: active -> completed, active <-> paused, active|paused -> unsubscribed.
completed and unsubscribed are terminal. Each write bumps `version` and is
rejected if the stored version moved, so a journey has a single writer
across processes; within a process callers serialize on `JourneyLocks`.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .models import (
    CustomerJourney,
    JourneyStatus,
    SequenceKind,
    StepDefinition,
    StepOutcome,
)
from .protocols import (
    CampaignNotFoundError,
    CampaignRepositoryProtocol,
    DripCampaignNotFoundError,
    DuplicateJourneyError,
    InvalidTransitionError,
    JourneyNotFoundError,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JourneyLocks:
    """In-process mutex per journey id"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, journey_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(journey_id, asyncio.Lock())
        self._holders[journey_id] = self._holders.get(journey_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[journey_id] -= 1
            if self._holders[journey_id] == 0:
                del self._holders[journey_id]
                del self._locks[journey_id]

    def __len__(self) -> int:
        return len(self._locks)


class JourneyStateMachine:
    """Journey lifecycle operations"""

    VALID_TRANSITIONS = {
        JourneyStatus.ACTIVE: [JourneyStatus.COMPLETED, JourneyStatus.PAUSED, JourneyStatus.UNSUBSCRIBED],
        JourneyStatus.PAUSED: [JourneyStatus.ACTIVE, JourneyStatus.UNSUBSCRIBED],
        JourneyStatus.COMPLETED: [],  # Terminal state
        JourneyStatus.UNSUBSCRIBED: [],  # Terminal state
    }

    def __init__(
        self,
        repository: CampaignRepositoryProtocol,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.clock = clock or utcnow

    # ====================
    # Lookups
    # ====================

    async def get(self, journey_id: str) -> CustomerJourney:
        journey = await self.repository.get_journey(journey_id)
        if not journey:
            raise JourneyNotFoundError(f"Journey not found: {journey_id}")
        return journey

    async def load_steps(self, journey: CustomerJourney) -> List[StepDefinition]:
        """Step sequence owning a journey"""
        if journey.sequence_kind == SequenceKind.DRIP:
            drip = await self.repository.get_drip_campaign(journey.campaign_id)
            if not drip:
                raise DripCampaignNotFoundError(f"Drip campaign not found: {journey.campaign_id}")
            return list(drip.steps)

        campaign = await self.repository.get_campaign(journey.campaign_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {journey.campaign_id}")
        return list(campaign.steps)

    # ====================
    # Transitions
    # ====================

    async def start(
        self,
        campaign_id: str,
        customer_id: str,
        organization_id: str,
        trigger_data: Optional[Dict[str, Any]] = None,
        sequence_kind: SequenceKind = SequenceKind.CAMPAIGN,
    ) -> CustomerJourney:
        """Create an active journey at step 0"""
        customer_id = str(customer_id)
        existing = await self.repository.get_journey_for_customer(campaign_id, customer_id)
        if existing and not existing.is_terminal:
            raise DuplicateJourneyError(
                f"Customer {customer_id} already has a {existing.status.value} journey in {campaign_id}",
                journey_id=existing.journey_id,
            )

        now = self.clock()
        journey = CustomerJourney(
            organization_id=organization_id,
            campaign_id=campaign_id,
            sequence_kind=sequence_kind,
            customer_id=customer_id,
            data=dict(trigger_data or {}),
            started_at=now,
            last_activity=now,
        )
        journey = await self.repository.create_journey(journey)
        logger.info(f"Journey {journey.journey_id} started: {campaign_id}/{customer_id}")
        return journey

    async def advance(
        self,
        journey_id: str,
        step_id: str,
        success: bool = True,
        steps: Optional[List[StepDefinition]] = None,
        outcome: Optional[StepOutcome] = None,
    ) -> CustomerJourney:
        """
        Mark a step handled and move past it.

        `success=False` records a skipped step: it still counts as handled.
        With an `outcome`, the journey write, its counters and the closed
        schedule entry commit together.
        Replaying an already-handled step returns the journey unchanged and
        only closes the outcome's entry.
        """
        journey = await self.get(journey_id)

        if step_id in journey.completed_steps:
            if outcome:
                await self.repository.record_step_outcome(outcome.entry_only())
            return journey

        if journey.status != JourneyStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot advance {journey.status.value} journey {journey_id}",
                current_status=journey.status,
            )

        if steps is None:
            steps = await self.load_steps(journey)
        index = next((i for i, s in enumerate(steps) if s.step_id == step_id), None)
        if index is None:
            raise InvalidTransitionError(f"Step {step_id} is not part of journey {journey_id}")

        now = self.clock()
        expected_version = journey.version
        journey.completed_steps.append(step_id)
        if not success:
            journey.skipped_steps.append(step_id)
        journey.current_step = max(journey.current_step, index + 1)
        journey.last_activity = now

        if journey.current_step >= len(steps):
            journey.status = JourneyStatus.COMPLETED
            journey.completed_at = now

        if outcome:
            journey.version = expected_version + 1
            journey = await self.repository.record_step_outcome(outcome, journey, expected_version)
        else:
            journey = await self._write(journey, expected_version)
        if journey.status == JourneyStatus.COMPLETED:
            logger.info(f"Journey {journey_id} completed")
        return journey

    async def pause(self, journey_id: str, failed_step_id: Optional[str] = None) -> CustomerJourney:
        """Suspend an active journey and drop its pending schedule"""
        journey = await self.get(journey_id)
        self._check_transition(journey, JourneyStatus.PAUSED)

        expected_version = journey.version
        journey.status = JourneyStatus.PAUSED
        journey.paused_at = self.clock()
        journey.failed_step_id = failed_step_id
        journey = await self._write(journey, expected_version)

        await self.repository.cancel_journey_entries(journey_id)
        logger.info(
            f"Journey {journey_id} paused"
            + (f" after failed step {failed_step_id}" if failed_step_id else "")
        )
        return journey

    async def resume(self, journey_id: str) -> CustomerJourney:
        """Reactivate a paused journey; scheduling is the caller's job"""
        journey = await self.get(journey_id)
        self._check_transition(journey, JourneyStatus.ACTIVE)

        expected_version = journey.version
        journey.status = JourneyStatus.ACTIVE
        journey.paused_at = None
        journey.failed_step_id = None
        journey = await self._write(journey, expected_version)
        logger.info(f"Journey {journey_id} resumed at step {journey.current_step}")
        return journey

    async def unsubscribe(self, journey_id: str) -> CustomerJourney:
        """Terminal opt-out from any non-terminal state"""
        journey = await self.get(journey_id)
        self._check_transition(journey, JourneyStatus.UNSUBSCRIBED)

        expected_version = journey.version
        journey.status = JourneyStatus.UNSUBSCRIBED
        journey.last_activity = self.clock()
        journey = await self._write(journey, expected_version)

        cancelled = await self.repository.cancel_journey_entries(journey_id)
        logger.info(f"Journey {journey_id} unsubscribed ({cancelled} pending steps cancelled)")
        return journey

    async def complete(self, journey_id: str) -> CustomerJourney:
        """Close an active journey that has no steps left"""
        journey = await self.get(journey_id)
        self._check_transition(journey, JourneyStatus.COMPLETED)

        expected_version = journey.version
        journey.status = JourneyStatus.COMPLETED
        journey.completed_at = self.clock()
        return await self._write(journey, expected_version)

    # ====================
    # Helpers
    # ====================

    def _check_transition(self, journey: CustomerJourney, target: JourneyStatus) -> None:
        if target not in self.VALID_TRANSITIONS.get(journey.status, []):
            raise InvalidTransitionError(
                f"Cannot move journey {journey.journey_id} from {journey.status.value} to {target.value}",
                current_status=journey.status,
            )

    async def _write(self, journey: CustomerJourney, expected_version: int) -> CustomerJourney:
        journey.version = expected_version + 1
        return await self.repository.update_journey(journey, expected_version)


__all__ = ["JourneyLocks", "JourneyStateMachine", "utcnow"]
